from tunegrab.jobs.models import ExtractionRequest, JobRecord, JobStatus


def _job(**kwargs):
    return JobRecord(source_reference="abc123", target_format="mp3", **kwargs)


def test_new_job_is_queued_at_zero():
    job = _job()
    assert job.status == JobStatus.QUEUED
    assert job.progress == 0
    assert job.completed_at is None
    assert job.id


def test_progress_never_regresses():
    job = _job()
    assert job.advance_progress(40)
    assert not job.advance_progress(30)
    assert not job.advance_progress(40)
    assert job.progress == 40
    assert job.advance_progress(250)
    assert job.progress == 100


def test_completed_pins_progress_and_is_terminal():
    job = _job()
    job.mark_processing(5)
    job.advance_progress(60)
    assert job.mark_completed("Band - Song.mp3", "/api/v1/downloads/Band%20-%20Song.mp3")
    assert job.progress == 100
    completed_at = job.completed_at

    assert not job.mark_failed("late error")
    assert not job.mark_completed("other.mp3", "/other")
    assert not job.advance_progress(100)
    assert job.status == JobStatus.COMPLETED
    assert job.result_file_name == "Band - Song.mp3"
    assert job.error_detail is None
    assert job.completed_at == completed_at


def test_failed_keeps_last_progress():
    job = _job()
    job.mark_processing(5)
    job.advance_progress(42)
    assert job.mark_failed("boom")
    assert job.progress == 42
    assert not job.mark_processing()
    assert not job.advance_progress(90)
    assert job.error_detail == "boom"


def test_public_representation_uses_camel_case():
    data = _job(display_title="Song").to_public()
    assert data["sourceReference"] == "abc123"
    assert data["displayTitle"] == "Song"
    assert data["status"] == "queued"
    assert "resultFileName" in data


def test_request_accepts_camel_case_payload():
    request = ExtractionRequest.model_validate({
        "sourceReference": "abc123",
        "targetFormat": "mp3",
        "displayTitle": "Song",
        "displayArtist": "Band",
        "customMetadata": {"album": "Demo"},
    })
    assert request.display_artist == "Band"
    assert request.custom_metadata == {"album": "Demo"}


def test_request_accepts_non_string_metadata_values():
    request = ExtractionRequest.model_validate({
        "sourceReference": "abc123",
        "customMetadata": {"year": 2020, "track": 3},
    })
    assert request.custom_metadata == {"year": 2020, "track": 3}
