from prospec.utils.json_extract import extract_json, strip_code_fence

PAYLOAD = '{"supplies": [{"name": "Drywall sheet", "quantity": 12}], "equipment": []}'


class TestStripCodeFence:
    def test_plain_text_unchanged(self):
        assert strip_code_fence(PAYLOAD) == PAYLOAD

    def test_json_fence(self):
        assert strip_code_fence(f"```json\n{PAYLOAD}\n```") == PAYLOAD

    def test_bare_fence(self):
        assert strip_code_fence(f"```\n{PAYLOAD}\n```") == PAYLOAD


class TestExtractJson:
    def test_fenced_parses_like_unwrapped(self):
        """A reply wrapped in ```json fences parses identically to the bare JSON."""
        assert extract_json(f"```json\n{PAYLOAD}\n```") == extract_json(PAYLOAD)

    def test_preamble_and_postamble(self):
        text = f"Sure! Here is the estimate:\n{PAYLOAD}\nLet me know if you need more."
        assert extract_json(text)["supplies"][0]["name"] == "Drywall sheet"

    def test_fence_after_preamble(self):
        text = f"Here you go:\n```json\n{PAYLOAD}\n```"
        assert extract_json(text)["supplies"][0]["quantity"] == 12

    def test_comment_lines_dropped(self):
        text = '{\n  // materials\n  "supplies": [],\n  "equipment": []\n}'
        assert extract_json(text) == {"supplies": [], "equipment": []}

    def test_braces_inside_strings(self):
        text = 'note: {"name": "Bracket {L-shaped}", "quantity": 4} trailing }'
        assert extract_json(text) == {"name": "Bracket {L-shaped}", "quantity": 4}

    def test_unparseable_returns_empty(self):
        assert extract_json("I cannot help with that.") == {}
        assert extract_json('{"supplies": [') == {}
        assert extract_json("") == {}

    def test_non_object_json_returns_empty(self):
        assert extract_json("[1, 2, 3]") == {}
