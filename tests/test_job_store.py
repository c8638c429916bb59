import json

from drugbind.job_store import JobStatus, JobStore


def test_snapshot_updates_progress_fraction(tmp_path):
    store = JobStore(persist_dir=tmp_path)
    job = store.create_job("batch_prediction", "Nightly screen")
    store.update(job.job_id, status=JobStatus.RUNNING)
    record = store.update(job.job_id, snapshot={"total": 4, "completed": 1}, flush=False)
    assert record.progress == 0.25
    assert record.started_at is not None
    assert record.finished_at is None


def test_finished_status_is_persisted(tmp_path):
    store = JobStore(persist_dir=tmp_path)
    job = store.create_job("batch_prediction", "Screen", details={"total_rows": 2})
    store.append_log(job.job_id, "row-2 failed")
    store.update(job.job_id, status=JobStatus.SUCCESS, results=[{"id": "row-2", "status": "failed"}])

    payload = json.loads((tmp_path / f"{job.job_id}.json").read_text())
    assert payload["status"] == "success"
    assert payload["logs"] == ["row-2 failed"]
    assert payload["results"][0]["id"] == "row-2"
    assert payload["finished_at"] is not None


def test_restore_marks_interrupted_runs_failed(tmp_path):
    first = JobStore(persist_dir=tmp_path)
    running = first.create_job("batch_prediction", "Running")
    first.update(running.job_id, status=JobStatus.RUNNING)
    done = first.create_job("batch_prediction", "Done")
    first.update(done.job_id, status=JobStatus.CANCELED, message="Cancelled")
    (tmp_path / "garbage.json").write_text("{")

    second = JobStore(persist_dir=tmp_path)
    assert second.get(running.job_id).status is JobStatus.FAILED
    assert second.get(running.job_id).message == "Interrupted by server restart"
    assert second.get(done.job_id).status is JobStatus.CANCELED
    assert len(second.list_jobs()) == 2


def test_list_jobs_newest_first():
    store = JobStore()
    older = store.create_job("batch_prediction", "a")
    older.created_at = 1.0
    newer = store.create_job("batch_prediction", "b")
    newer.created_at = 2.0
    assert [record.label for record in store.list_jobs()] == ["b", "a"]
