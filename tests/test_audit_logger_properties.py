"""
Property-based tests for the Audit Logger module.

Uses Hypothesis for property-based testing of output formats, level
filtering, secret masking, and error context.
"""

import json
from io import StringIO

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from geo_resolver.audit_logger import AuditLogger
from geo_resolver.enums import LogLevel
from geo_resolver.exceptions import CacheError


@st.composite
def log_level_strategy(draw) -> LogLevel:
    """Generate valid LogLevel values."""
    return draw(st.sampled_from(list(LogLevel)))


@st.composite
def component_name_strategy(draw) -> str:
    """Generate valid component names."""
    return draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-"),
        min_size=1,
        max_size=50,
    ))


@st.composite
def message_strategy(draw) -> str:
    """Generate valid log messages."""
    return draw(st.text(
        alphabet=st.characters(
            whitelist_categories=('L', 'N', 'P', 'S', 'Z'),
            blacklist_characters='\x00\n\r',
        ),
        min_size=1,
        max_size=200,
    ))


@st.composite
def non_sensitive_key_strategy(draw) -> str:
    """Generate keys that are NOT sensitive."""
    key = draw(st.text(
        alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz_"),
        min_size=1,
        max_size=20,
    ))
    for pattern in AuditLogger.SENSITIVE_KEYS:
        assume(pattern not in key)
    return key


@st.composite
def sensitive_key_strategy(draw) -> str:
    """Generate keys that ARE sensitive."""
    base = draw(st.sampled_from(sorted(AuditLogger.SENSITIVE_KEYS)))
    prefix = draw(st.sampled_from(['', 'cache_', 'upstream_', 'X_']))
    suffix = draw(st.sampled_from(['', '_value', '_data', '_1']))
    return f"{prefix}{base}{suffix}"


simple_values = st.one_of(
    st.text(min_size=0, max_size=50),
    st.integers(min_value=-1000, max_value=1000),
    st.floats(allow_nan=False, allow_infinity=False, min_value=-1000, max_value=1000),
    st.booleans(),
    st.none(),
)


class TestDualFormatProperty:
    """Each entry is written once per configured format."""

    @given(
        level=log_level_strategy(),
        component=component_name_strategy(),
        message=message_strategy(),
        data=st.dictionaries(non_sensitive_key_strategy(), simple_values, max_size=5),
    )
    @settings(max_examples=100)
    def test_both_format_writes_json_and_text(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: dict,
    ) -> None:
        """
        *For any* entry logged in 'both' mode, one JSON line and one text
        line are written, and both carry the component and message.
        """
        output = StringIO()
        logger = AuditLogger(output_format="both", output_stream=output, level=LogLevel.DEBUG)

        logger.log(level, component, message, data)

        lines = output.getvalue().strip("\n").split("\n")
        assert len(lines) == 2

        parsed = json.loads(lines[0])
        assert parsed["level"] == level.value
        assert parsed["component"] == component
        assert parsed["message"] == message
        assert parsed["data"] == data

        assert f"[{component}]" in lines[1]
        assert level.value.upper() in lines[1]
        assert message in lines[1]

    @given(level=log_level_strategy(), message=message_strategy())
    @settings(max_examples=50)
    def test_json_only_format(self, level: LogLevel, message: str) -> None:
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output, level=LogLevel.DEBUG)

        logger.log(level, "ResolutionQueue", message)

        lines = output.getvalue().strip("\n").split("\n")
        assert len(lines) == 1
        assert json.loads(lines[0])["message"] == message

    def test_invalid_format_rejected(self) -> None:
        try:
            AuditLogger(output_format="xml")
        except ValueError:
            return
        raise AssertionError("Expected ValueError for unsupported output format")


class TestLevelFilteringProperty:
    """Entries below the configured level are dropped."""

    @given(threshold=log_level_strategy(), level=log_level_strategy())
    @settings(max_examples=100)
    def test_entries_below_threshold_are_dropped(self, threshold: LogLevel, level: LogLevel) -> None:
        order = list(LogLevel)
        output = StringIO()
        logger = AuditLogger(output_stream=output, level=threshold)

        entry = logger.log(level, "RateLimiter", "window full")

        if order.index(level) >= order.index(threshold):
            assert entry is not None
            assert logger.entries == [entry]
            assert output.getvalue()
        else:
            assert entry is None
            assert logger.entries == []
            assert output.getvalue() == ""

    def test_from_config_parses_level(self) -> None:
        logger = AuditLogger.from_config("warn", "json")

        assert logger.level is LogLevel.WARN
        assert logger.output_format == "json"
        assert not logger.is_enabled_for(LogLevel.INFO)
        assert logger.is_enabled_for(LogLevel.ERROR)


class TestSensitiveDataMaskingProperty:
    """Secrets never reach the log output."""

    @given(
        sensitive_key=sensitive_key_strategy(),
        sensitive_value=st.text(alphabet=st.sampled_from("QWXYZ"), min_size=5, max_size=20),
    )
    @settings(max_examples=100)
    def test_sensitive_data_masked(
        self,
        sensitive_key: str,
        sensitive_value: str,
    ) -> None:
        """
        *For any* data key containing a sensitive pattern, the value is
        replaced with the mask in both the entry and the output.
        """
        output = StringIO()
        logger = AuditLogger(output_format="json", output_stream=output)

        entry = logger.log(LogLevel.INFO, "cli", "loaded configuration", {sensitive_key: sensitive_value})

        assert entry.data[sensitive_key] == AuditLogger.MASK_VALUE
        parsed = json.loads(output.getvalue().strip())
        assert parsed["data"][sensitive_key] == AuditLogger.MASK_VALUE
        assert sensitive_value not in output.getvalue()

    @given(key=non_sensitive_key_strategy(), value=st.text(min_size=1, max_size=50))
    @settings(max_examples=100)
    def test_non_sensitive_data_not_masked(self, key: str, value: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log(LogLevel.INFO, "MetadataFetcher", "lookup", {key: value})

        assert entry.data[key] == value

    @given(sensitive_key=sensitive_key_strategy(), sensitive_value=st.text(min_size=1, max_size=50))
    @settings(max_examples=100)
    def test_nested_sensitive_data_masked(self, sensitive_key: str, sensitive_value: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log(
            LogLevel.INFO,
            "cli",
            "config",
            {"cache": {sensitive_key: sensitive_value, "file_path": "/tmp/cache.json"}},
        )

        assert entry.data["cache"][sensitive_key] == AuditLogger.MASK_VALUE
        assert entry.data["cache"]["file_path"] == "/tmp/cache.json"


class TestErrorContextProperty:
    """Error entries carry the exception that caused them."""

    @given(message=message_strategy(), domain=st.sampled_from(["geo.example", "tracker.example"]))
    @settings(max_examples=50)
    def test_error_logs_include_error_context(self, message: str, domain: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        error = CacheError(code="io_error", message=message)

        entry = logger.log_error("ResolutionQueue", "cache failed", error=error, additional_data={"domain": domain})

        assert entry.level is LogLevel.ERROR
        assert entry.data["error_message"] == message
        assert entry.data["error_type"] == "CacheError"
        assert entry.data["error_code"] == "io_error"
        assert entry.data["domain"] == domain

    def test_plain_exceptions_have_no_error_code(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        entry = logger.log_error("ResolutionQueue", "unexpected", error=RuntimeError("boom"))

        assert entry.data["error_type"] == "RuntimeError"
        assert "error_code" not in entry.data

    def test_additional_data_is_not_mutated(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        extra = {"domain": "geo.example"}

        logger.log_error("ResolutionQueue", "unexpected", error=ValueError("bad"), additional_data=extra)

        assert extra == {"domain": "geo.example"}
