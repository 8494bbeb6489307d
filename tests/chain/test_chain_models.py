"""Tests for chain read models."""

from datetime import UTC, datetime

from solders.pubkey import Pubkey

from kora_rent_tracker.chain.models import AccountSnapshot, ParsedInstruction, ParsedTx
from kora_rent_tracker.chain.programs import TOKEN_PROGRAM_ID

OWNER = str(Pubkey(bytes([21]) * 32))


class TestAccountSnapshot:
    """Tests for token layout reads."""

    def test_token_fields(self, token_data) -> None:
        snap = AccountSnapshot("acct", 2_039_280, TOKEN_PROGRAM_ID, token_data(OWNER, 12345))

        assert snap.token_amount() == 12345
        assert snap.token_owner() == OWNER
        assert snap.data_size == 165
        assert not snap.is_data_empty

    def test_short_data(self) -> None:
        snap = AccountSnapshot("acct", 1, TOKEN_PROGRAM_ID, bytes(40))

        assert snap.token_amount() is None
        assert snap.token_owner() is None
        assert snap.is_data_empty


class TestParsedTx:
    """Tests for jsonParsed transaction decoding."""

    def test_from_rpc(self, parsed_tx_result, ata_ix, operator, user) -> None:
        result = parsed_tx_result(
            keys=[(operator, True), (user, False)],
            instructions=[ata_ix(operator, "acct", user), {"programId": "X", "data": "abc"}],
        )

        tx = ParsedTx.from_rpc("sig1", result)

        assert tx.fee_payer == operator
        assert tx.signers == (operator,)
        assert tx.succeeded
        assert tx.block_datetime == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert tx.instructions[0].parsed_type == "create"
        assert tx.instructions[0].info["wallet"] == user
        assert not tx.instructions[1].is_parsed

    def test_legacy_string_keys(self) -> None:
        tx = ParsedTx.from_rpc(
            "sig2",
            {"slot": 1, "transaction": {"message": {"accountKeys": ["A", "B"]}}},
        )

        assert tx.fee_payer == "A"
        assert tx.signers == ()
        assert tx.block_datetime is None

    def test_failed(self, parsed_tx_result, operator) -> None:
        result = parsed_tx_result(keys=[(operator, True)], instructions=[], err={"x": 1})

        assert not ParsedTx.from_rpc("sig3", result).succeeded

    def test_instruction_with_string_parsed(self) -> None:
        ix = ParsedInstruction.from_dict({"programId": "Memo", "parsed": "hello"})

        assert ix.program_id == "Memo"
        assert not ix.is_parsed
