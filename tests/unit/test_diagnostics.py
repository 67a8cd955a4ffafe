"""Unit tests for provider diagnostics and result normalization."""

import pytest

from models.diagnostics import (
    DiagnosticLevel,
    GeneratedAssetResult,
    ProviderName,
    ProviderOperation,
    SerializedError,
    diagnostic,
    normalize_asset_result,
    select_primary_diagnostic,
    serialize_error,
)


class TestSerializeError:
    """Tests for serialize_error."""

    @pytest.mark.unit
    def test_exception_keeps_name_stack_and_cause(self):
        try:
            try:
                raise KeyError("missing")
            except KeyError as inner:
                raise RuntimeError("outer failure") from inner
        except RuntimeError as e:
            serialized = serialize_error(e)

        assert serialized.name == "RuntimeError"
        assert serialized.message == "outer failure"
        assert "outer failure" in serialized.stack
        assert serialized.cause == "'missing'"

    @pytest.mark.unit
    def test_unraised_exception_has_no_stack(self):
        serialized = serialize_error(ValueError("bad"))
        assert serialized.stack is None
        assert serialized.cause is None

    @pytest.mark.unit
    def test_string(self):
        assert serialize_error("boom") == SerializedError(message="boom")

    @pytest.mark.unit
    def test_mapping_with_message(self):
        serialized = serialize_error({"message": "quota", "name": "QuotaError"})
        assert serialized.message == "quota"
        assert serialized.name == "QuotaError"

    @pytest.mark.unit
    def test_other_values_are_json_encoded(self):
        assert serialize_error({"code": 429}).message == '{"code": 429}'
        assert serialize_error(42).message == "42"

    @pytest.mark.unit
    def test_unencodable_value(self):
        assert serialize_error(object()).message == "Unknown error"

    @pytest.mark.unit
    def test_serialized_error_passes_through(self):
        original = SerializedError(message="already")
        assert serialize_error(original) is original


class TestGeneratedAssetResult:
    """Tests for the result invariant."""

    @pytest.mark.unit
    def test_missing_url_requires_diagnostic(self):
        with pytest.raises(ValueError):
            GeneratedAssetResult(provider=ProviderName.VEO, operation=ProviderOperation.VIDEO, url=None)

    @pytest.mark.unit
    def test_fallback_requires_diagnostic(self):
        with pytest.raises(ValueError):
            GeneratedAssetResult(
                provider=ProviderName.LYRIA,
                operation=ProviderOperation.MUSIC,
                url="https://cdn.test/track.mp3",
                fallback_used=True,
            )

    @pytest.mark.unit
    def test_success_without_diagnostics(self):
        result = GeneratedAssetResult(
            provider=ProviderName.GEMINI, operation=ProviderOperation.STORYBOARD, url="data:image/png;base64,AA=="
        )
        assert result.to_dict()["diagnostics"] == []


class TestNormalizeAssetResult:
    """Tests for normalize_asset_result."""

    @pytest.mark.unit
    def test_bare_string(self):
        result = normalize_asset_result("https://cdn.test/clip.mp4")
        assert result.url == "https://cdn.test/clip.mp4"
        assert result.fallback_used is False
        assert result.diagnostics == []

    @pytest.mark.unit
    def test_structured_result(self):
        entry = diagnostic(DiagnosticLevel.WARN, "VEO_IMAGE_TO_VIDEO_FAILED", "fell back")
        result = normalize_asset_result(
            GeneratedAssetResult(
                provider=ProviderName.VEO,
                operation=ProviderOperation.VIDEO,
                url="https://cdn.test/clip.mp4",
                fallback_used=True,
                diagnostics=[entry],
            )
        )
        assert result.fallback_used is True
        assert result.diagnostics == [entry]

    @pytest.mark.unit
    def test_camel_case_mapping(self):
        result = normalize_asset_result(
            {
                "url": "https://cdn.test/track.mp3",
                "fallbackUsed": True,
                "diagnostics": [
                    {"level": "warn", "code": "LYRIA_NO_DATA", "message": "No audio", "context": {"mood": "calm"}},
                    {"level": "loud", "code": "X", "message": "unknown level"},
                    "not a diagnostic",
                ],
            }
        )
        assert result.fallback_used is True
        assert [d.code for d in result.diagnostics] == ["LYRIA_NO_DATA", "X"]
        assert result.diagnostics[0].context == {"mood": "calm"}
        assert result.diagnostics[1].level == DiagnosticLevel.INFO

    @pytest.mark.unit
    def test_non_string_url_is_dropped(self):
        assert normalize_asset_result({"url": 12}).url is None

    @pytest.mark.unit
    @pytest.mark.parametrize("value", [None, 42, ["https://cdn.test/a.mp4"]])
    def test_unknown_shapes_collapse_to_empty(self, value):
        result = normalize_asset_result(value)
        assert result.url is None
        assert result.fallback_used is False
        assert result.diagnostics == []


class TestSelectPrimaryDiagnostic:
    """Tests for select_primary_diagnostic."""

    @pytest.mark.unit
    def test_prefers_first_error(self):
        diagnostics = [
            diagnostic(DiagnosticLevel.INFO, "A", "info"),
            diagnostic(DiagnosticLevel.WARN, "B", "warn"),
            diagnostic(DiagnosticLevel.ERROR, "C", "first error"),
            diagnostic(DiagnosticLevel.ERROR, "D", "second error"),
        ]
        assert select_primary_diagnostic(diagnostics).code == "C"

    @pytest.mark.unit
    def test_falls_back_to_first_warning(self):
        diagnostics = [
            diagnostic(DiagnosticLevel.INFO, "A", "info"),
            diagnostic(DiagnosticLevel.WARN, "B", "warn"),
            diagnostic(DiagnosticLevel.WARN, "C", "warn again"),
        ]
        assert select_primary_diagnostic(diagnostics).code == "B"

    @pytest.mark.unit
    def test_info_only_has_no_primary(self):
        assert select_primary_diagnostic([diagnostic(DiagnosticLevel.INFO, "A", "info")]) is None
        assert select_primary_diagnostic([]) is None
