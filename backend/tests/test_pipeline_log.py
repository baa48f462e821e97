"""
Pipeline log tracker tests.
"""

from datetime import datetime, timedelta, timezone

from listsync.services.pipeline_log import LogLevel, LogStep, PipelineLogTracker, pipeline_log


class TestPipelineLog:

    def test_singleton(self):
        assert PipelineLogTracker() is pipeline_log

    def test_entries_are_filtered_by_session(self):
        pipeline_log.log_info(LogStep.UPLOAD, "Stored 3 rows", "s-1")
        pipeline_log.log_error(LogStep.SYNC, "Row 2 failed", "s-2")
        pipeline_log.log_success(LogStep.SYNC, "Done", "s-1")

        entries = pipeline_log.get_session_logs("s-1")

        assert [entry["message"] for entry in entries] == ["Stored 3 rows", "Done"]
        assert entries[1]["level"] == LogLevel.SUCCESS.value

    def test_timestamps_are_utc(self):
        pipeline_log.log_info(LogStep.UPLOAD, "Stored 1 row", "s-1")

        stamp = datetime.fromisoformat(pipeline_log.get_session_logs("s-1")[0]["timestamp"])

        assert stamp.utcoffset() == timedelta(0)
        assert abs(datetime.now(timezone.utc) - stamp) < timedelta(minutes=1)

    def test_clear_session_logs(self):
        pipeline_log.log_info(LogStep.UPLOAD, "a", "s-1")
        pipeline_log.log_info(LogStep.UPLOAD, "b", "s-2")

        assert pipeline_log.clear_session_logs("s-1") == 1
        assert [entry["session_id"] for entry in pipeline_log.get_all_logs()] == ["s-2"]

    def test_get_all_logs_limit(self):
        for i in range(5):
            pipeline_log.log_warning(LogStep.ENRICH, f"warning {i}")

        assert [entry["message"] for entry in pipeline_log.get_all_logs(limit=2)] == ["warning 3", "warning 4"]
        assert pipeline_log.get_all_logs(limit=0) == []

    def test_export_csv(self):
        pipeline_log.log_info(LogStep.PURGE, 'Purged "old" data', "s-9")

        lines = pipeline_log.export_logs_csv().splitlines()

        assert lines[0] == '"Timestamp","Level","Step","Message","Session ID"'
        assert lines[1].endswith('"info","purge","Purged ""old"" data","s-9"')
