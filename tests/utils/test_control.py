"""Tests for hidden control block reading."""

from pagegen.utils.control import CollectionStatus, read_control_block


def _reply(payload: str) -> str:
    return f"Thanks for sharing!\n```HIDDEN_CONTROL\n{payload}\n```"


class TestReadControlBlock:
    def test_ready_block(self):
        control = read_control_block(_reply(
            '{"collection_status": "READY_TO_ADVANCE", "user_type": "developer", '
            '"collected_data": {"core_identity": "Engineer"}, "confidence_level": "HIGH", '
            '"next_focus": "none"}'
        ))
        assert control is not None
        assert control.ready
        assert control.status is CollectionStatus.READY_TO_ADVANCE
        assert control.user_type == "developer"
        assert control.collected_data == {"core_identity": "Engineer"}
        assert control.confidence_level == "HIGH"

    def test_missing_block(self):
        assert read_control_block("Just a reply.") is None

    def test_unterminated_block_ignored(self):
        text = 'Reply\n```HIDDEN_CONTROL\n{"collection_status": "READY_TO_ADVANCE"}'
        assert read_control_block(text) is None

    def test_incomplete_json_ignored(self):
        assert read_control_block(_reply('{"collection_status": "CONTINUE"')) is None

    def test_unknown_status_means_continue(self):
        control = read_control_block(_reply('{"collection_status": "MAYBE"}'))
        assert control.status is CollectionStatus.CONTINUE
        assert not control.ready

    def test_loose_json_is_repaired(self):
        control = read_control_block(_reply("{collection_status: 'need_clarification',}"))
        assert control.status is CollectionStatus.NEED_CLARIFICATION

    def test_last_block_wins(self):
        text = _reply('{"collection_status": "CONTINUE"}') + "\n" + _reply(
            '{"collection_status": "READY_TO_ADVANCE"}'
        )
        assert read_control_block(text).ready

    def test_non_mapping_collected_data_dropped(self):
        control = read_control_block(_reply('{"collected_data": ["a"], "collection_summary": "x"}'))
        assert control.collected_data == {}
        assert control.collection_summary is None

    def test_ordinary_json_block_is_not_control(self):
        text = 'Plan:\n```json\n{"collection_status": "READY_TO_ADVANCE"}\n```'
        assert read_control_block(text) is None
