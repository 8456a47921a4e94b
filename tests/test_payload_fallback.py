"""Unit tests for vulnstream.services.payload_fallback: wrapped arrays, bare objects, NDJSON."""

import io
import json
import unittest

from vulnstream.schemas.ingest import ItemsEvent, LogEvent
from vulnstream.services.json_stream import RecordBatcher
from vulnstream.services.payload_fallback import (
    WHOLE_DOCUMENT,
    SkipSampler,
    find_record_prefix,
    iter_array_items,
    iter_ndjson_events,
    iter_record_events,
)


def _ids(events: list) -> list[str]:
    return [r.id for e in events if isinstance(e, ItemsEvent) for r in e.items]


def _spool(document: object) -> io.BytesIO:
    return io.BytesIO(json.dumps(document).encode())


def _items(document: object) -> list:
    spool = _spool(document)
    prefix = find_record_prefix(spool)
    return [] if prefix is None else list(iter_array_items(spool, prefix))


class TestFindRecordPrefix(unittest.TestCase):
    """find_record_prefix streams the spool to locate the record list."""

    def test_top_level_array(self) -> None:
        self.assertEqual(find_record_prefix(_spool([{"id": "A"}])), "item")
        self.assertEqual(_items([{"id": "A"}, 2]), [{"id": "A"}, 2])

    def test_container_keys_case_insensitive(self) -> None:
        for key in ("vulnerabilities", "Items", "DATA", "results"):
            with self.subTest(key=key):
                self.assertEqual(_items({key: [{"id": "A"}]}), [{"id": "A"}])

    def test_nested_wrapper_matches_inner_array(self) -> None:
        inner = [{"id": "A"}, {"id": "B", "cvss": 7.5}]
        spool = _spool({"wrapper": {"vulnerabilities": inner}})
        self.assertEqual(find_record_prefix(spool), "wrapper.vulnerabilities.item")
        self.assertEqual(list(iter_array_items(spool, "wrapper.vulnerabilities.item")), inner)

    def test_first_match_in_document_order(self) -> None:
        doc = {"meta": {"items": [{"id": "first"}]}, "vulnerabilities": [{"id": "second"}]}
        self.assertEqual(_items(doc), [{"id": "first"}])

    def test_non_container_arrays_are_ignored(self) -> None:
        doc = {"refs": [{"id": "nope"}], "payload": {"data": [{"id": "yes"}]}}
        self.assertEqual(_items(doc), [{"id": "yes"}])

    def test_empty_first_container_means_nothing_found(self) -> None:
        self.assertIsNone(find_record_prefix(_spool({"data": [], "items": [{"id": "A"}]})))
        self.assertIsNone(find_record_prefix(_spool([])))

    def test_bare_object_is_single_record(self) -> None:
        doc = {"cveId": "CVE-1", "severity": "low"}
        self.assertEqual(find_record_prefix(_spool(doc)), WHOLE_DOCUMENT)
        self.assertEqual(_items(doc), [doc])

    def test_nothing_found(self) -> None:
        self.assertIsNone(find_record_prefix(_spool({"meta": {"count": 0}})))
        self.assertIsNone(find_record_prefix(_spool("text")))
        self.assertIsNone(find_record_prefix(_spool(3)))

    def test_skips_bom(self) -> None:
        spool = io.BytesIO(b'\xef\xbb\xbf{"data": [{"id": "A"}]}')
        prefix = find_record_prefix(spool)
        self.assertEqual(list(iter_array_items(spool, prefix)), [{"id": "A"}])

    def test_multiple_values_raise_value_error(self) -> None:
        for data in (b'{"id":"A"}\n{"id":"B"}\n', b'{"data":[{"id":"A"}]}\n{"id":"B"}\n', b'{"id":'):
            with self.subTest(data=data):
                with self.assertRaises(ValueError):
                    find_record_prefix(io.BytesIO(data))


class TestIterRecordEvents(unittest.TestCase):
    def test_batches_and_skips(self) -> None:
        candidates = [{"id": f"V-{i}"} for i in range(5)] + [7, {"title": "no id"}]
        events = list(iter_record_events(candidates, RecordBatcher(2), log_every=2000))
        self.assertEqual(_ids(events), [f"V-{i}" for i in range(5)])
        sizes = [len(e.items) for e in events if isinstance(e, ItemsEvent)]
        self.assertEqual(sizes, [2, 2, 1])
        skip_logs = [e for e in events if isinstance(e, LogEvent) and "Skipping" in e.message]
        self.assertEqual(len(skip_logs), 1)

    def test_wrapped_yields_same_records_as_inner_array(self) -> None:
        inner = [{"cveId": "CVE-1", "severity": "HIGH"}, {"cveId": "CVE-2"}]
        wrapped = {"wrapper": {"vulnerabilities": inner}}
        direct = list(iter_record_events(_items(inner), RecordBatcher(500), 2000))
        via_wrapper = list(iter_record_events(_items(wrapped), RecordBatcher(500), 2000))
        self.assertEqual(
            [r.to_wire() for e in direct if isinstance(e, ItemsEvent) for r in e.items],
            [r.to_wire() for e in via_wrapper if isinstance(e, ItemsEvent) for r in e.items],
        )


class TestIterNdjsonEvents(unittest.TestCase):
    """NDJSON: one record per valid line regardless of line endings and blank lines."""

    def _run(self, data: bytes) -> list:
        return list(iter_ndjson_events(io.BytesIO(data), RecordBatcher(500), log_every=2000))

    def test_mixed_line_endings_and_blank_lines(self) -> None:
        lines = [json.dumps({"id": x}) for x in ("A", "B", "C", "D")]
        data = (lines[0] + "\n" + lines[1] + "\r\n\r\n" + lines[2] + "\r" + lines[3] + "\n\n\n").encode()
        self.assertEqual(_ids(self._run(data)), ["A", "B", "C", "D"])

    def test_trailing_blank_lines_do_not_matter(self) -> None:
        base = b'{"id":"A"}\n{"id":"B"}'
        self.assertEqual(_ids(self._run(base)), _ids(self._run(base + b"\n\n  \n")))

    def test_unparseable_lines_are_skipped(self) -> None:
        data = b'{"id":"A"}\nnot json\n{"id":\n{"id":"B"}\n'
        events = self._run(data)
        self.assertEqual(_ids(events), ["A", "B"])
        self.assertTrue(any(isinstance(e, LogEvent) and "parse error" in e.message for e in events))

    def test_spool_stays_open(self) -> None:
        spool = io.BytesIO(b'{"id":"A"}\n')
        list(iter_ndjson_events(spool, RecordBatcher(500), log_every=2000))
        self.assertFalse(spool.closed)


class TestSkipSampler(unittest.TestCase):
    def test_first_and_every_nth(self) -> None:
        sampler = SkipSampler(3)
        logged = [sampler.skip() for _ in range(7)]
        self.assertEqual(logged, [True, False, True, False, False, True, False])


if __name__ == "__main__":
    unittest.main()
