"""Tests for page classification and streaming collation."""

import io
import json
import logging
import random

import pytest

from pagecollator import (
    ClassifiedPage,
    JsonArrayWriter,
    PageFetchError,
    PageKind,
    StreamingCollator,
    classify_page,
)
from pagecollator._cancellation import CancellationToken, OperationCancelledError


class FakeFetcher:
    """Serves page bodies from a dict; values that are exceptions are raised."""

    def __init__(self, pages: dict[int, object]):
        self.pages = pages
        self.requested: list[int] = []

    def fetch_page(self, page, cancellation=None):
        self.requested.append(page)
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        body = self.pages[page]
        if isinstance(body, Exception):
            raise body
        return body


class FlushCountingStringIO(io.StringIO):

    def __init__(self):
        super().__init__()
        self.flushes = 0
        self.snapshots: list[str] = []

    def flush(self):
        self.flushes += 1
        self.snapshots.append(self.getvalue())
        super().flush()


# =============================================================================
# classify_page
# =============================================================================


class TestClassifyPage:

    def test_array(self):
        assert classify_page("[1,2]") == ClassifiedPage(kind=PageKind.ARRAY, content="1,2")

    def test_interior_is_trimmed(self):
        assert classify_page("  [ 1 , 2 ]\n").content == "1 , 2"

    @pytest.mark.parametrize("body", ["[]", "[ ]", "  [\n\t]  "])
    def test_empty_array(self, body):
        assert classify_page(body) == ClassifiedPage(kind=PageKind.EMPTY_ARRAY, content=None)

    @pytest.mark.parametrize("body", ['{"error":"x"}', "", "[", "]", "null", " [1,2 "])
    def test_non_array_keeps_raw_untrimmed_body(self, body):
        assert classify_page(body) == ClassifiedPage(kind=PageKind.NOT_ARRAY, content=body)

    def test_nested_arrays_only_strip_outer_brackets(self):
        assert classify_page("[[1],[2]]").content == "[1],[2]"

    @pytest.mark.parametrize("body", ["  [1, 2] ", "[]", " {\"a\": 1} ", "[ [] ]"])
    def test_classification_is_idempotent_on_trimmed_input(self, body):
        first = classify_page(body)
        second = classify_page(body.strip())

        assert second.kind is first.kind
        if first.kind is not PageKind.NOT_ARRAY:
            assert second.content == first.content


# =============================================================================
# JsonArrayWriter
# =============================================================================


class TestJsonArrayWriter:

    def test_separates_groups_with_commas(self):
        sink = io.StringIO()
        writer = JsonArrayWriter(sink)

        writer.open()
        writer.write_group("1,2")
        writer.write_group('"a"')
        writer.close()

        assert sink.getvalue() == '[1,2,"a"]'
        assert writer.groups_written == 2

    def test_empty_document(self):
        sink = io.StringIO()
        writer = JsonArrayWriter(sink)

        writer.open()
        writer.close()

        assert sink.getvalue() == "[]"


# =============================================================================
# StreamingCollator
# =============================================================================


class TestStreamingCollator:

    def test_end_to_end_example(self, tmp_path):
        fetcher = FakeFetcher({1: "[1,2]", 2: "[]", 3: "[3]"})
        output = tmp_path / "output.json"

        result = StreamingCollator(fetcher).collate(total_pages=3, output_path=output)

        assert output.read_text(encoding="utf-8") == "[1,2,3]"
        assert json.loads(output.read_text(encoding="utf-8")) == [1, 2, 3]
        assert result.total_pages == 3
        assert result.groups_written == 2
        assert result.empty_pages == 1
        assert result.malformed_pages == 0
        assert result.bytes_written == len("[1,2,3]")
        assert result.output_path == output.resolve()

    def test_pages_are_requested_in_order(self, tmp_path):
        fetcher = FakeFetcher({n: f"[{n}]" for n in range(1, 13)})

        StreamingCollator(fetcher).collate(total_pages=12, output_path=tmp_path / "out.json")

        assert fetcher.requested == list(range(1, 13))

    def test_zero_pages_produces_empty_array(self, tmp_path):
        output = tmp_path / "out.json"

        StreamingCollator(FakeFetcher({})).collate(total_pages=0, output_path=output)

        assert output.read_text(encoding="utf-8") == "[]"

    def test_only_empty_pages_produce_empty_array(self, tmp_path):
        output = tmp_path / "out.json"

        StreamingCollator(FakeFetcher({1: "[]", 2: "[ ]", 3: " [] "})).collate(total_pages=3, output_path=output)

        assert output.read_text(encoding="utf-8") == "[]"

    def test_leading_and_trailing_empty_pages_add_no_commas(self, tmp_path):
        output = tmp_path / "out.json"
        fetcher = FakeFetcher({1: "[]", 2: "[1]", 3: "[]", 4: "[2]", 5: "[]"})

        StreamingCollator(fetcher).collate(total_pages=5, output_path=output)

        assert output.read_text(encoding="utf-8") == "[1,2]"

    def test_malformed_page_is_written_verbatim_with_warning(self, tmp_path, caplog):
        output = tmp_path / "out.json"
        fetcher = FakeFetcher({1: "[1]", 2: ' {"error":"x"} ', 3: "[2]"})

        with caplog.at_level(logging.WARNING, logger="pagecollator._collator"):
            result = StreamingCollator(fetcher).collate(total_pages=3, output_path=output)

        assert output.read_text(encoding="utf-8") == '[1, {"error":"x"} ,2]'
        assert json.loads(output.read_text(encoding="utf-8")) == [1, {"error": "x"}, 2]
        assert result.malformed_pages == 1
        assert any("Page 2 response is not a JSON array" in r.getMessage() for r in caplog.records)

    def test_output_matches_concatenation_of_random_pages(self, tmp_path):
        rng = random.Random(7)
        pages = [[rng.randint(-100, 100) for _ in range(rng.randint(0, 5))] for _ in range(40)]
        bodies = {n: json.dumps(values) for n, values in enumerate(pages, start=1)}
        output = tmp_path / "out.json"

        StreamingCollator(FakeFetcher(bodies)).collate(total_pages=40, output_path=output)

        expected = "[" + ",".join(json.dumps(p)[1:-1].strip() for p in pages if p) + "]"
        assert output.read_text(encoding="utf-8") == expected
        assert json.loads(expected) == [v for p in pages for v in p]

    def test_failure_aborts_run_and_leaves_truncated_file(self, tmp_path, caplog):
        pages: dict[int, object] = {n: f"[{n}]" for n in range(1, 11)}
        pages[5] = PageFetchError(page=5, status_code=503, message="Page 5 failed with HTTP 503")
        fetcher = FakeFetcher(pages)
        output = tmp_path / "out.json"

        with caplog.at_level(logging.ERROR, logger="pagecollator._collator"):
            with pytest.raises(PageFetchError):
                StreamingCollator(fetcher).collate(total_pages=10, output_path=output)

        content = output.read_text(encoding="utf-8")
        assert content == "[1,2,3,4"
        assert not content.endswith("]")
        assert fetcher.requested == [1, 2, 3, 4, 5]
        assert any("Failed to fetch page 5" in r.getMessage() for r in caplog.records)

    def test_cancellation_aborts_run(self, tmp_path):
        token = CancellationToken()
        output = tmp_path / "out.json"

        class CancellingFetcher(FakeFetcher):
            def fetch_page(self, page, cancellation=None):
                if page == 3:
                    token.cancel()
                return super().fetch_page(page, cancellation)

        fetcher = CancellingFetcher({n: f"[{n}]" for n in range(1, 6)})

        with pytest.raises(OperationCancelledError):
            StreamingCollator(fetcher).collate(total_pages=5, output_path=output, cancellation=token)

        assert output.read_text(encoding="utf-8") == "[1,2"

    def test_existing_output_file_is_replaced(self, tmp_path):
        output = tmp_path / "out.json"
        output.write_text("previous content that is much longer than the new one", encoding="utf-8")

        StreamingCollator(FakeFetcher({1: "[1]"})).collate(total_pages=1, output_path=output)

        assert output.read_text(encoding="utf-8") == "[1]"

    def test_output_is_utf8(self, tmp_path):
        output = tmp_path / "out.json"

        StreamingCollator(FakeFetcher({1: '["café"]', 2: '["日本"]'})).collate(total_pages=2, output_path=output)

        assert output.read_bytes() == '["café","日本"]'.encode("utf-8")

    def test_flushes_after_each_written_page(self):
        sink = FlushCountingStringIO()
        fetcher = FakeFetcher({1: "[1]", 2: "[]", 3: "[3]"})

        groups = StreamingCollator(fetcher).collate_to(sink, total_pages=3)

        assert groups == 2
        assert sink.snapshots[:2] == ["[1", "[1,3"]
        assert sink.getvalue() == "[1,3]"

    def test_logs_progress_every_interval_and_on_last_page(self, caplog):
        fetcher = FakeFetcher({n: f"[{n}]" for n in range(1, 26)})

        with caplog.at_level(logging.INFO, logger="pagecollator._collator"):
            StreamingCollator(fetcher, progress_interval=10).collate_to(io.StringIO(), total_pages=25)

        progress = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Progress:")]
        assert [m.split(" ")[1] for m in progress] == ["10/25", "20/25", "25/25"]
        assert all("Elapsed: " in m for m in progress)
