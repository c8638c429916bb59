import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from drugbind import main
from drugbind.history_store import HistoryStore
from drugbind.job_store import JobStore
from drugbind.predictor import Prediction, SimulatedPredictionClient
from drugbind.workflows import BATCH_JOB_KIND


SEQ = "MKTAYIAKQRQISFVKSHFSRQLEERLGLIEVQAPILSRVGDGTQDNLSGAEKAVQVKVKALPDAQ"


class SlowPredictor:
    async def predict(self, smiles, fasta):
        await asyncio.sleep(5.0)
        return Prediction(pk=6.0, confidence=0.7)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "store", JobStore(persist_dir=tmp_path / "jobs"))
    monkeypatch.setattr(main, "history", HistoryStore(tmp_path / "history.json"))
    monkeypatch.setattr(main, "predictor", SimulatedPredictionClient())
    return TestClient(main.app)


def _rows(count):
    return [
        {"drug_name": f"drug-{n}", "smiles": "C" * n, "protein_name": "EGFR", "fasta": SEQ}
        for n in range(1, count + 1)
    ]


def _wait_for_job(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        payload = client.get(f"/api/jobs/{job_id}").json()
        if payload["status"] in {"success", "failed", "canceled"}:
            return payload
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def test_validate_reports_row_errors(client):
    rows = _rows(2) + [{"drug_name": "bad", "smiles": "C", "protein_name": "EGFR", "fasta": SEQ + "9"}]
    resp = client.post("/api/batch/validate", json={"rows": rows})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_rows"] == 2
    assert len(body["errors"]) == 1
    assert body["errors"][0].startswith("Row 4:")


def test_run_without_valid_rows_is_rejected(client):
    resp = client.post("/api/batch/run", json={"csv_text": "drug_name,smiles\nA,C\n"})
    assert resp.status_code == 400
    assert "Missing required columns" in resp.json()["detail"]


def test_batch_run_completes_and_saves_history(client):
    resp = client.post("/api/batch/run", json={"rows": _rows(3), "label": "api test", "max_concurrent": 2})
    assert resp.status_code == 200
    job_id = resp.json()["job_id"]

    job = _wait_for_job(client, job_id)
    assert job["status"] == "success"
    assert job["kind"] == BATCH_JOB_KIND
    assert job["snapshot"]["completed"] == 3
    assert job["snapshot"]["percentage"] == 100.0
    assert job["details"]["saved_records"] == 3

    results = client.get(f"/api/batch/{job_id}/results").json()["results"]
    assert [row["drug_name"] for row in results] == ["drug-1", "drug-2", "drug-3"]
    assert all(row["status"] == "success" for row in results)

    csv_resp = client.get(f"/api/batch/{job_id}/results.csv")
    assert csv_resp.status_code == 200
    assert csv_resp.text.splitlines()[0].startswith("Drug Name,Protein Name")

    history = client.get("/api/history", params={"source": "batch"}).json()
    assert len(history) == 3
    assert all(record["batch_id"] == job_id for record in history)

    stats = client.get("/api/history/stats").json()
    assert stats["total_predictions"] == 3
    assert stats["most_tested_protein"] == "EGFR"
    assert stats["predictions_by_source"] == {"single": 0, "batch": 3}


def test_cancel_running_batch(client, monkeypatch):
    monkeypatch.setattr(main, "predictor", SlowPredictor())
    resp = client.post("/api/batch/run", json={"rows": _rows(3), "max_concurrent": 1})
    job_id = resp.json()["job_id"]

    deadline = time.monotonic() + 5.0
    while client.get(f"/api/jobs/{job_id}").json()["status"] != "running" and time.monotonic() < deadline:
        time.sleep(0.02)
    cancel = client.post(f"/api/jobs/{job_id}/cancel")
    assert cancel.status_code == 200

    job = _wait_for_job(client, job_id)
    assert job["status"] == "canceled"
    results = client.get(f"/api/batch/{job_id}/results").json()["results"]
    assert all(row["status"] == "failed" and row["error_kind"] == "cancelled" for row in results)
    assert client.get("/api/history").json() == []


def test_job_not_running_here_cannot_be_cancelled(client):
    job = main.store.create_job(BATCH_JOB_KIND, "orphan")
    assert client.post(f"/api/jobs/{job.job_id}/cancel").status_code == 409
    assert client.get(f"/api/batch/{job.job_id}/results.csv").status_code == 409
    assert client.get("/api/jobs/missing").status_code == 404


def test_single_prediction_and_history_edits(client):
    resp = client.post("/api/predict", json={"smiles": "CCO", "fasta": SEQ, "drug_name": "Ethanol"})
    assert resp.status_code == 200
    body = resp.json()
    assert 0.0 <= body["confidence_score"] <= 1.0
    record_id = body["record"]["id"]
    assert body["record"]["source"] == "single"

    patched = client.patch(f"/api/history/{record_id}", json={"notes": "solvent", "tags": ["control"]})
    assert patched.json()["notes"] == "solvent"
    assert client.post(f"/api/history/{record_id}/favorite").json()["is_favorite"] is True
    assert len(client.get("/api/history", params={"favorites_only": True}).json()) == 1

    export = client.get("/api/history/export.csv")
    assert "Ethanol" in export.text

    assert client.delete(f"/api/history/{record_id}").status_code == 200
    assert client.get(f"/api/history/{record_id}").status_code == 404
    assert client.delete(f"/api/history/{record_id}").status_code == 404


def test_single_prediction_rejects_bad_sequence(client):
    resp = client.post("/api/predict", json={"smiles": "CCO", "fasta": "MKT123"})
    assert resp.status_code == 400
    assert "invalid characters" in resp.json()["detail"]


def test_empty_history_stats(client):
    stats = client.get("/api/history/stats").json()
    assert stats["total_predictions"] == 0
    assert stats["most_tested_protein"] == ""
    assert client.delete("/api/history").json() == {"deleted": 0}


class BrokenPredictor:
    async def predict(self, smiles, fasta):
        raise RuntimeError("connection reset by model host")


def test_single_prediction_unexpected_error_is_bad_gateway(client, monkeypatch):
    monkeypatch.setattr(main, "predictor", BrokenPredictor())
    resp = client.post("/api/predict", json={"smiles": "CCO", "fasta": SEQ})
    assert resp.status_code == 502
    assert "connection reset" in resp.json()["detail"]
    assert client.get("/api/history").json() == []


def test_single_prediction_records_drug_likeness(client):
    body = client.post("/api/predict", json={"smiles": "CC(=O)OC1=CC=CC=C1C(=O)O", "fasta": SEQ}).json()
    assert body["drug_likeness_score"] is not None
    assert body["record"]["drug_likeness_score"] == body["drug_likeness_score"]


def test_drug_likeness_endpoint(client):
    resp = client.post("/api/drug-likeness", json={"smiles": "CC(=O)OC1=CC=CC=C1C(=O)O"})
    assert resp.status_code == 200
    assert resp.json()["classification"] == "Drug-like"
    assert client.post("/api/drug-likeness", json={"smiles": "C1CC"}).status_code == 400
