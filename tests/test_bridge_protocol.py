"""Tests for bridge message framing and the method catalog."""

from __future__ import annotations

import json

import pytest

from editorbridge.bridge import CATALOG, Affinity, get_method, parse_params
from editorbridge.bridge.catalog import ApplyDiffParams, DiagnosticsParams, FolderListParams, RefreshParams
from editorbridge.bridge.protocol import BridgeEvent, BridgeRequest, BridgeResponse, decode_message, encode_message
from editorbridge.core.errors import (
    BridgeTimeoutError,
    InvalidParameterError,
    LocatorError,
    MethodNotFoundError,
    ProtocolError,
    error_from_payload,
)
from editorbridge.patching import ContextStrictness, MatchMode


class TestFraming:
    def test_request_is_one_json_line(self) -> None:
        encoded = encode_message(BridgeRequest(id=7, method="script/read", params={"path": "Assets/A.cs"}))

        assert encoded.endswith(b"\n")
        assert encoded.count(b"\n") == 1
        assert decode_message(encoded) == BridgeRequest(id=7, method="script/read", params={"path": "Assets/A.cs"})

    def test_multiline_payloads_stay_on_one_line(self) -> None:
        encoded = encode_message(BridgeResponse.success(3, {"content": "a\nb\n"}))

        assert encoded.count(b"\n") == 1
        assert decode_message(encoded).result == {"content": "a\nb\n"}

    def test_error_response(self) -> None:
        response = BridgeResponse.failure(4, LocatorError(message="nope", details={"reason": "not_found"}))

        decoded = decode_message(encode_message(response))

        assert isinstance(decoded, BridgeResponse)
        assert not decoded.ok
        error = error_from_payload(decoded.error)
        assert isinstance(error, LocatorError)
        assert error.reason == "not_found"
        assert error.message == "nope"

    def test_event_has_no_id(self) -> None:
        decoded = decode_message(b'{"event":"compile-finished","data":{"success":false}}\n')

        assert decoded == BridgeEvent(event="compile-finished", data={"success": False})

    def test_missing_params_default_to_empty(self) -> None:
        assert decode_message('{"id":1,"method":"ping"}') == BridgeRequest(id=1, method="ping")

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "not json",
            "[1, 2]",
            '{"id":"1","method":"ping"}',
            '{"method":"ping"}',
            '{"id":1,"method":"ping","params":[1]}',
            '{"id":1,"something":true}',
        ],
    )
    def test_malformed_messages_raise_protocol_error(self, line: str) -> None:
        with pytest.raises(ProtocolError):
            decode_message(line)


class TestErrorPayloads:
    def test_timeout_is_flagged_ambiguous(self) -> None:
        payload = BridgeTimeoutError().to_dict()

        assert payload["kind"] == "timeout"
        assert payload["ambiguous"] is True
        assert isinstance(error_from_payload(payload), BridgeTimeoutError)

    def test_unknown_kind_is_kept(self) -> None:
        error = error_from_payload({"kind": "custom", "message": "boom"})

        assert error.error_code == "custom"
        assert str(error) == "[custom] boom"


class TestCatalog:
    def test_mutating_methods_are_main_affine(self) -> None:
        main = {name for name, spec in CATALOG.items() if spec.affinity is Affinity.MAIN}

        assert main == {
            "script/create",
            "script/delete",
            "script/rename",
            "script/applyDiff",
            "folder/create",
            "folder/rename",
            "folder/move",
            "folder/delete",
        }
        assert get_method("script/read").affinity is Affinity.WORKER

    def test_unknown_method(self) -> None:
        with pytest.raises(MethodNotFoundError) as excinfo:
            get_method("script/explode")

        assert "ping" in excinfo.value.details["available"]

    def test_unknown_keys_are_rejected(self) -> None:
        with pytest.raises(InvalidParameterError):
            parse_params("script/read", {"path": "Assets/A.cs", "pth": "typo"})

    def test_missing_required_key(self) -> None:
        with pytest.raises(InvalidParameterError) as excinfo:
            parse_params("script/read", {})

        assert "path" in excinfo.value.message

    def test_wrong_type_reports_location(self) -> None:
        with pytest.raises(InvalidParameterError) as excinfo:
            parse_params("diagnostics/list", {"fresh": "yes"})

        assert excinfo.value.details["path"] == "fresh"

    def test_apply_diff_params_are_typed(self) -> None:
        params = parse_params(
            "script/applyDiff",
            {
                "path": "Assets/A.cs",
                "dryRun": True,
                "contextStrictness": "exact",
                "patches": [
                    {"searchPattern": "Start()", "matchMode": "fuzzy", "newContent": "x", "contextBefore": ["a"]},
                    {"startLine": 3, "endLine": 4, "newContent": ""},
                    {"startLine": 6, "newContent": None},
                ],
            },
        )

        assert isinstance(params, ApplyDiffParams)
        assert params.dry_run and params.validate_context
        assert params.context_strictness is ContextStrictness.EXACT
        assert params.patches[0].match_mode is MatchMode.CASE_INSENSITIVE
        assert params.patches[0].context_before == ("a",)
        assert params.patches[1].end_line == 4
        assert params.patches[1].new_content == ""
        assert params.patches[2].new_content is None

    def test_patch_without_locator_is_rejected(self) -> None:
        with pytest.raises(InvalidParameterError):
            parse_params("script/applyDiff", {"path": "Assets/A.cs", "patches": [{"newContent": "x"}]})

    def test_rename_rejects_path_separators(self) -> None:
        with pytest.raises(InvalidParameterError):
            parse_params("folder/rename", {"path": "Assets/A", "newName": "B/C"})

    def test_defaults_and_camel_case(self) -> None:
        listing = parse_params("folder/list", {"includeMeta": True})
        diagnostics = parse_params("diagnostics/list", {"includeWarnings": False})
        refresh = parse_params("refresh/request", {"folders": ["Assets/A"], "saveAssets": True})

        assert listing == FolderListParams(path="Assets", include_meta=True)
        assert diagnostics == DiagnosticsParams(include_warnings=False)
        assert refresh == RefreshParams(save_assets=True, folders=("Assets/A",))

    def test_catalog_schemas_are_valid_json(self) -> None:
        for spec in CATALOG.values():
            json.dumps(spec.params_type.SCHEMA)
