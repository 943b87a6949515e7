from locust import HttpUser, task, between
import random


class DinerUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Each simulated diner gets its own client session and account
        r = self.client.post("/sessions")
        self.headers = {"X-Session-Id": r.json()["session_id"]} if r.status_code == 201 else None
        if not self.headers:
            return
        email = f"diner_{random.randint(1, 1_000_000)}@example.com"
        self.client.post("/auth/signup", json={"email": email, "password": "secret1"}, headers=self.headers)
        self.client.post("/auth/login", json={"email": email, "password": "secret1"}, headers=self.headers)
        self.menu_ids = [item["id"] for item in self.client.get("/menu").json()]

    def on_stop(self):
        if self.headers:
            self.client.delete(f"/sessions/{self.headers['X-Session-Id']}", name="/sessions/[id]")

    @task(4)
    def browse_menu(self):
        self.client.get("/menu")

    @task(2)
    def search(self):
        if not self.headers:
            return
        self.client.get("/search", params={"q": random.choice(["chai", "biryani", "toast"])}, headers=self.headers)

    @task(2)
    def add_to_cart_and_checkout(self):
        if not self.headers or not self.menu_ids:
            return
        self.client.post("/cart/items", json={"menu_item_id": random.choice(self.menu_ids)}, headers=self.headers)
        self.client.post("/checkout", headers=self.headers)

    @task(1)
    def list_orders(self):
        if not self.headers:
            return
        self.client.get("/orders", headers=self.headers)
        self.client.get("/notifications", headers=self.headers)
