"""Tests for callback state encoding."""

import base64
import json

from tenantgate.core.auth.state import AuthFlow, CallbackState, decode_state, encode_state


def _raw(payload: object) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


class TestEncodeState:
    """Test state encoding."""

    def test_uses_camel_case_keys(self) -> None:
        """Should encode token fields with camelCase names."""
        raw = encode_state(
            CallbackState(flow=AuthFlow.INVITATION, realm="groundup", invitation_token="abc")
        )

        payload = json.loads(base64.b64decode(raw))
        assert payload == {"flow": "invitation", "realm": "groundup", "invitationToken": "abc"}

    def test_round_trip(self) -> None:
        """Should decode to the state that was encoded."""
        state = CallbackState(flow=AuthFlow.JOIN_LINK, realm="r1", join_token="j1")

        assert decode_state(encode_state(state)) == state


class TestDecodeState:
    """Test state decoding."""

    def test_missing_state(self) -> None:
        """Should return None for an absent state."""
        assert decode_state(None) is None
        assert decode_state("") is None

    def test_garbage_state(self) -> None:
        """Should return None instead of raising on undecodable input."""
        assert decode_state("%%%not-base64%%%") is None
        assert decode_state(base64.b64encode(b"not json").decode()) is None

    def test_non_object_json(self) -> None:
        """Should reject JSON that is not an object."""
        assert decode_state(_raw(["invitation"])) is None

    def test_unpadded_state(self) -> None:
        """Should accept base64 with the padding stripped."""
        raw = _raw({"flow": "new_org", "realm": "groundup"}).rstrip("=")

        state = decode_state(raw)

        assert state is not None
        assert state.flow is AuthFlow.NEW_ORG

    def test_unknown_flow_falls_back_to_default(self) -> None:
        """Should map an unrecognized flow name to the default flow."""
        state = decode_state(_raw({"flow": "teleport", "realm": "r1"}))

        assert state is not None
        assert state.flow is AuthFlow.DEFAULT
        assert state.realm == "r1"

    def test_missing_flow_is_default(self) -> None:
        """Should default the flow when the state omits it."""
        state = decode_state(_raw({"realm": "r1"}))

        assert state is not None
        assert state.flow is AuthFlow.DEFAULT

    def test_reads_snake_case_keys(self) -> None:
        """Should accept snake_case token keys as well."""
        state = decode_state(_raw({"flow": "join_link", "join_token": "j1"}))

        assert state is not None
        assert state.join_token == "j1"
