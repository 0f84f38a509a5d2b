import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import analyze_log

EVENTS = [
    {"ts": "2025-01-01T10:00:00+00:00", "event": "received", "port": 9999, "peer": "127.0.0.1:50000", "bytes": 5},
    {"ts": "2025-01-01T10:00:00+00:00", "event": "sent", "port": 9999, "peer": "127.0.0.1:50000", "bytes": 32},
    {"ts": "2025-01-01T10:00:01+00:00", "event": "closed", "port": 9999, "peer": "127.0.0.1:50000"},
    {"ts": "2025-02-01T10:00:00+00:00", "event": "error", "port": 9999, "peer": None,
     "operation": "ERROR on binding", "error": "ERROR on binding: Address already in use"},
    {"ts": "2025-03-01T10:00:00+00:00", "event": "received", "port": 9999, "peer": "10.0.0.2:41000", "bytes": 255},
    {"ts": "2025-03-01T10:00:00+00:00", "event": "error", "port": 9999, "peer": "10.0.0.2:41000",
     "operation": "ERROR writing to socket", "error": "ERROR writing to socket: Broken pipe"},
]


class TestAnalyzeLog(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "events.log"
        with self.path.open("w", encoding="utf-8") as f:
            for e in EVENTS:
                f.write(json.dumps(e) + "\n")
            f.write("not json\n")
            f.write("\n")

    def test_summarize(self):
        s = analyze_log.summarize(self.path)
        self.assertEqual(s["sessions"], 1)
        self.assertEqual(s["received"], 2)
        self.assertEqual(s["sent"], 1)
        self.assertEqual(s["errors_total"], 2)
        self.assertEqual(s["bytes_received"], 260)
        self.assertEqual(s["failures"]["ERROR on binding"], 1)
        self.assertEqual(s["peers"]["10.0.0.2:41000"], 1)
        self.assertEqual(s["malformed"], 1)

    def test_bad_field_types_are_malformed(self):
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps({"event": "received", "bytes": "lots", "peer": "1.2.3.4:1"}) + "\n")
            f.write(json.dumps({"event": 5}) + "\n")
            f.write(json.dumps({"event": "received", "bytes": 3, "peer": ["x"]}) + "\n")
            f.write(json.dumps({"event": "closed", "ts": 12345}) + "\n")
        s = analyze_log.summarize(self.path, analyze_log.parse_ts("2025-01-01T00:00:00Z"))
        self.assertEqual(s["malformed"], 4)
        self.assertEqual(s["received"], 2)
        self.assertEqual(s["bytes_received"], 260)
        self.assertEqual(s["sessions"], 2)

    def test_since_filter(self):
        since = analyze_log.parse_ts("2025-02-15T00:00:00Z")
        s = analyze_log.summarize(self.path, since)
        self.assertEqual(s["sessions"], 0)
        self.assertEqual(s["received"], 1)
        self.assertEqual(dict(s["failures"]), {"ERROR writing to socket": 1})

    def test_naive_since_is_utc(self):
        self.assertEqual(analyze_log.parse_ts("2025-02-15T00:00:00"),
                         analyze_log.parse_ts("2025-02-15T00:00:00Z"))
        self.assertIsNone(analyze_log.parse_ts("yesterday"))

    def test_main_output(self):
        with mock.patch("sys.stdout", new_callable=io.StringIO) as out:
            rc = analyze_log.main(["-f", str(self.path)])
        text = out.getvalue()
        self.assertEqual(rc, 0)
        self.assertIn("Sessions closed: 1", text)
        self.assertIn("ERROR writing to socket", text)
        self.assertIn("1 malformed line(s) skipped", text)

    def test_missing_file(self):
        with mock.patch("sys.stdout", new_callable=io.StringIO) as out:
            rc = analyze_log.main(["-f", str(Path(self.tmp.name) / "nope.log")])
        self.assertEqual(rc, 1)
        self.assertIn("File not found", out.getvalue())


if __name__ == '__main__':
    unittest.main()
