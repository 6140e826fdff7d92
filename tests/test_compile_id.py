import pytest

from compiletrace.schema.compile_id import CompileId


class TestCompileId:

    def test_string_forms(self):
        assert str(CompileId(0, 1)) == "0_1"
        assert str(CompileId(0, 1, 2)) == "0_1_2"
        assert str(CompileId(0, 1, compiled_autograd_id=3)) == "!3_0_1"

    @pytest.mark.parametrize("text", ["0_1", "0_1_2", "!3_0_1", "!3_0_1_0", "12_0_0"])
    def test_parse_inverts_str(self, text):
        assert str(CompileId.parse(text)) == text

    def test_structural_equality(self):
        assert CompileId(0, 0, 0) == CompileId.parse("0_0_0")
        assert len({CompileId(1, 2), CompileId(1, 2)}) == 1
        assert CompileId(0, 0, 0) != CompileId(0, 0, 1)

    @pytest.mark.parametrize("text", ["", "0", "a_b", "!x_0_1", "0_1_2_3"])
    def test_parse_rejects_garbage(self, text):
        with pytest.raises(ValueError):
            CompileId.parse(text)

    def test_display_name(self):
        assert CompileId(0, 1).display_name == "0/1"
        assert CompileId(0, 1, 0).display_name == "0/1"
        assert CompileId(0, 1, 2).display_name == "0/1 (attempt 2)"
        assert CompileId(0, 1, compiled_autograd_id=3).display_name == "!3/0/1"

    def test_from_fields(self):
        cid = CompileId.from_fields({"frame_id": 2, "frame_compile_id": 1, "attempt": 0})
        assert cid == CompileId(2, 1, 0)
        assert CompileId.from_fields({"rank": 0}) is None

    def test_sorting(self):
        ids = [CompileId(1, 0), CompileId(0, 1), CompileId(0, 0, 1), CompileId(0, 0)]
        assert [str(c) for c in sorted(ids, key=CompileId.sort_key)] == ["0_0", "0_0_1", "0_1", "1_0"]
