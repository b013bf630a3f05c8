from exchange_sync.core.structured_logging import build_log_context


def test_build_log_context_omits_empty_values():
    context = build_log_context(sync_log_id="log-1", resource="contacts", mode=None, triggered_by="")

    assert context == {"sync_log_id": "log-1", "resource": "contacts"}


def test_build_log_context_all_fields():
    context = build_log_context(
        sync_log_id="log-1",
        resource="notes",
        mode="full",
        triggered_by="scheduler:daily_full",
        job_name="daily_full",
    )

    assert context["job_name"] == "daily_full"
    assert context["triggered_by"] == "scheduler:daily_full"
    assert set(context) == {"sync_log_id", "resource", "mode", "triggered_by", "job_name"}
