import unittest

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from datagrid.api.deps import get_request_provider, grid_response_or_400
from datagrid.services.request_provider import GridRequestProvider
from grid_fixtures import Item, make_engine, seed


class GridEndpointTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = make_engine(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        with Session(cls.engine) as session:
            seed(session, items=30)

        app = FastAPI()

        @app.post("/items/grid")
        def items_grid(provider: GridRequestProvider = Depends(get_request_provider)):
            with Session(cls.engine) as session:
                return grid_response_or_400(session.query(Item), {"columns": {0: "id", "name": "label"}}, provider)

        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls.engine.dispose()

    def test_grid_response(self):
        response = self.client.post(
            "/items/grid",
            json={"page": 2, "throttle": 10, "sort": [{"column": "id", "direction": "asc"}], "filters": []},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 30)
        self.assertEqual(body["pages"], 3)
        self.assertEqual((body["previous_page"], body["next_page"]), (1, 3))
        self.assertEqual(body["rows"][0], {"id": 11, "label": "Item 11"})
        self.assertEqual(body["sort"], [{"column": "id", "direction": "asc"}])

    def test_filters_in_body(self):
        response = self.client.post("/items/grid", json={"filters": [{"label": "|=Item 7|"}]})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["filtered"], 1)
        self.assertEqual(body["filters"], [{"column": "name", "operator": "=", "value": "Item 7"}])

    def test_unknown_filter_column_is_ignored(self):
        response = self.client.post("/items/grid", json={"filters": [{"1=1 OR name": "x"}]})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual((body["total"], body["filtered"]), (30, 30))
        self.assertEqual(body["filters"], [])

    def test_unknown_sort_column_is_400(self):
        response = self.client.post("/items/grid", json={"sort": [{"column": "missing", "direction": "asc"}]})
        self.assertEqual(response.status_code, 400)
        self.assertIn("[missing]", response.json()["detail"])

    def test_invalid_throttle_is_400(self):
        response = self.client.post("/items/grid", json={"throttle": -3})
        self.assertEqual(response.status_code, 400)
        self.assertIn("[-3]", response.json()["detail"])

    def test_unknown_method_is_rejected_by_schema(self):
        response = self.client.post("/items/grid", json={"method": "sideways"})
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
