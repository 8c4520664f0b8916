import os

os.environ.setdefault("BCRYPT_ROUNDS", "4")

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from errors import DeliveryFailed
from mailer import get_mailer
from main import app


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_mail(self, to, subject, body):
        if self.fail:
            raise DeliveryFailed()
        self.sent.append({"to": to, "subject": subject, "body": body})


@pytest.fixture
def mongo():
    db = mongomock.MongoClient()["cars2customer_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(mongo, mailer):
    app.dependency_overrides[get_db] = lambda: mongo
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def top_admin(client):
    res = client.post("/admin/register/top", json={"email": "top@cars.com", "password": "topsecret"})
    assert res.status_code == 201
    return res.json()["uniqueId"]


@pytest.fixture
def admin_id(client):
    res = client.post("/admin/register", json={"email": "admin@cars.com", "password": "secret"})
    assert res.status_code == 201
    return res.json()["uniqueId"]


def _car_payload(car_id="c1", brand="Toyota", **overrides):
    car = {
        "carId": car_id,
        "brand": brand,
        "model": "Corolla",
        "year": "2019",
        "price": "850000",
        "paragraph": "Single owner, full service history.",
        "kmDriven": "42000",
        "fuelType": "Petrol",
        "transmission": "Manual",
        "condition": "Excellent",
        "location": "Chennai",
        "images": ["https://img.example.com/c1-front.jpg"],
        "features": [{"icon": "ac", "label": "Air conditioning"}],
        "technicalSpecifications": [{"label": "Engine", "value": "1.8L"}],
    }
    car.update(overrides)
    return car


@pytest.fixture
def verified_user(client, mongo):
    email = "buyer@example.com"
    assert client.post("/user/request-otp", json={"email": email}).status_code == 200
    otp = mongo["user"].find_one({"email": email})["otp"]
    res = client.post("/user/register", json={"email": email, "password": "p@ss1", "otp": otp})
    assert res.status_code == 201
    return {"email": email, "password": "p@ss1", "uniqueId": res.json()["uniqueId"]}


@pytest.fixture
def car_payload():
    return _car_payload
