import requests
import os
import sqlite3

BASE_URL = "http://127.0.0.1:8000/api/v1"
HEADERS = {"X-User-Id": "1", "X-Tenant-Id": "1"}


def prepare_source(path):
    if os.path.exists(path):
        os.remove(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, city TEXT);
        INSERT INTO users VALUES (1, 'Alice', 'Paris');
        INSERT INTO users VALUES (2, 'Bob', 'Lyon');
        INSERT INTO users VALUES (3, 'Charlie', 'Paris');
        """
    )
    conn.commit()
    conn.close()


def test_workflow():
    print("Starting End-to-End Test...")

    source_path = os.path.abspath("data/verify_source.db")
    prepare_source(source_path)

    # 1. Register the data source
    print("1. Creating Data Source...")
    payload = {"name": "verify-sqlite", "type": "sqlite", "database": source_path}
    response = requests.post(f"{BASE_URL}/datasources/", json=payload, headers=HEADERS)
    if response.status_code != 200:
        print(f"Failed to create data source: {response.text}")
        return
    datasource_id = response.json()["id"]
    print(f"Data source created with ID: {datasource_id}")

    response = requests.post(f"{BASE_URL}/datasources/{datasource_id}/test", headers=HEADERS)
    result = response.json()
    print(f"Connection test: {result['message']} ({result['elapsed_ms']} ms)")
    if not result["success"]:
        return

    # 2. Create a draft API service
    print("2. Creating API Service...")
    service_payload = {
        "name": "verify-users-by-city",
        "path": "/verify/users",
        "datasource_id": datasource_id,
        "sql_content": "SELECT id, name FROM users WHERE city = ${city} ORDER BY id",
    }
    response = requests.post(f"{BASE_URL}/api-services/", json=service_payload, headers=HEADERS)
    if response.status_code != 200:
        print(f"Failed to create API service: {response.text}")
        return
    service_id = response.json()["id"]
    print(f"API service created with ID: {service_id}")

    # 3. Test the draft
    print("3. Testing Draft...")
    response = requests.post(
        f"{BASE_URL}/api-services/{service_id}/test/draft",
        json={"parameters": {"city": "Paris"}},
        headers=HEADERS,
    )
    draft = response.json()
    print(f"Draft query: {draft['executed_query']}")
    if not draft["success"]:
        print(f"Draft test failed: {draft['error_message']}")
        return

    # 4. Publish
    print("4. Publishing v1...")
    response = requests.post(
        f"{BASE_URL}/api-services/{service_id}/publish", json={"version": "v1"}, headers=HEADERS
    )
    if response.status_code != 200:
        print(f"Failed to publish: {response.text}")
        return

    # 5. Test the published version
    print("5. Testing Published Version...")
    response = requests.post(
        f"{BASE_URL}/api-services/{service_id}/test/published",
        json={"parameters": {"city": "Paris"}},
        headers=HEADERS,
    )
    published = response.json()
    print(f"Version {published['version']} returned {published['record_count']} rows")

    if published["success"] and published["record_count"] == 2:
        print("Verification Successful: Published API returns expected rows.")
    else:
        print(f"Verification Failed: {published}")

    # Leave the service editable for the next run
    requests.post(f"{BASE_URL}/api-services/{service_id}/unpublish", headers=HEADERS)
    requests.delete(f"{BASE_URL}/api-services/{service_id}", headers=HEADERS)


if __name__ == "__main__":
    test_workflow()
