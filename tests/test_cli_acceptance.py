from __future__ import annotations

import io
import json
import sys
import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest import mock

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from datadiag import cli

DOCUMENT = {
    "sources": {
        "services": [
            {"name": "api", "status": "ok", "calls": "db"},
            {"name": "db", "status": "down"},
        ]
    },
    "templates": [
        {
            "id": "services",
            "from": "services",
            "body": [
                {
                    "node": {
                        "id": "${name}",
                        "label": "${name}",
                        "styles": [
                            {
                                "type": "category",
                                "property": "fill",
                                "field": "status",
                                "categories": {"ok": "#22c55e", "down": "#ef4444"},
                            }
                        ],
                    }
                },
                {"if": "calls", "then": [{"edge": {"from": "${name}", "to": "${calls}"}}]},
            ],
        }
    ],
    "legends": True,
}


class CLIAcceptanceTests(unittest.TestCase):
    def run_cli(self, argv: list[str], stdin_text: str = "") -> tuple[int, str, str]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        stdin = io.StringIO(stdin_text)
        with mock.patch("sys.stdout", stdout), mock.patch("sys.stderr", stderr), mock.patch("sys.stdin", stdin):
            code = cli.main(argv)
        return code, stdout.getvalue(), stderr.getvalue()

    def test_requires_subcommand(self) -> None:
        code, _out, err = self.run_cli([])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)
        self.assertIn("subcommand", err)

    def test_compile_file_writes_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "services.json"
            src.write_text(json.dumps(DOCUMENT))
            code, out, err = self.run_cli(["compile", str(src)])
            self.assertEqual(code, 0, err)
            target = Path(td) / "services.compiled.json"
            self.assertTrue(target.exists())
            self.assertIn("Wrote", out)
            compiled = json.loads(target.read_text())
            self.assertEqual([node["id"] for node in compiled["nodes"]], ["api", "db"])
            self.assertEqual([edge["id"] for edge in compiled["edges"]], ["api->db"])
            self.assertEqual(len(compiled["legends"]), 1)

    def test_compile_text_to_stdout(self) -> None:
        code, out, err = self.run_cli(["compile", "--text", json.dumps(DOCUMENT)])
        self.assertEqual(code, 0, err)
        compiled = json.loads(out)
        self.assertEqual(compiled["nodes"][1]["style"], {"fill": "#ef4444"})

    def test_compile_from_stdin(self) -> None:
        code, out, err = self.run_cli(["compile"], stdin_text=json.dumps(DOCUMENT))
        self.assertEqual(code, 0, err)
        self.assertIn('"api->db"', out)

    def test_compile_explicit_output(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "out.json"
            code, _out, err = self.run_cli(["compile", "--text", json.dumps(DOCUMENT), "-o", str(target)])
            self.assertEqual(code, 0, err)
            self.assertIn("nodes", json.loads(target.read_text()))

    def test_strict_compile_fails_on_bad_record(self) -> None:
        doc = dict(DOCUMENT)
        doc["templates"] = [
            {"id": "services", "from": "services", "body": [{"node": {"id": "${name}", "label": "${owner.name}"}}]}
        ]
        code, _out, err = self.run_cli(
            ["compile", "--text", json.dumps(doc), "--strict", "--no-safe-navigation"]
        )
        self.assertEqual(code, 3)
        self.assertIn("E_TEMPLATE", err)

    def test_missing_data_source(self) -> None:
        doc = dict(DOCUMENT, sources={})
        code, _out, err = self.run_cli(["--error-format", "json", "compile", "--text", json.dumps(doc)])
        self.assertEqual(code, 3)
        payload = json.loads(err.strip().splitlines()[-1])
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["code"], "E_DATA_SOURCE")

    def test_malformed_mapping_is_a_semantic_error(self) -> None:
        doc = dict(DOCUMENT)
        doc["templates"] = [
            {
                "id": "services",
                "from": "services",
                "body": [
                    {
                        "node": {
                            "id": "${name}",
                            "styles": [{"type": "threshold", "property": "fill", "field": "x", "thresholds": [80]}],
                        }
                    }
                ],
            }
        ]
        code, _out, err = self.run_cli(["compile", "--text", json.dumps(doc)])
        self.assertEqual(code, 3)
        self.assertIn("E_MAPPING_INVALID", err)
        self.assertNotIn("E_INTERNAL", err)

    def test_non_integer_legend_steps(self) -> None:
        doc = dict(DOCUMENT, legends=True, legendDefaults={"steps": "3"})
        code, _out, err = self.run_cli(["legend", "--text", json.dumps(doc)])
        self.assertEqual(code, 3)
        self.assertIn("E_LEGEND_CONFIG", err)

    def test_invalid_document_json_error(self) -> None:
        code, _out, err = self.run_cli(["--error-format", "json", "compile", "--text", "{not json"])
        self.assertEqual(code, 2)
        payload = json.loads(err.strip().splitlines()[-1])
        self.assertEqual(payload["code"], "E_DOCUMENT")
        self.assertIn("hint", payload)

    def test_missing_input_file(self) -> None:
        code, _out, err = self.run_cli(["compile", "/nonexistent/doc.json"])
        self.assertEqual(code, 2)
        self.assertIn("E_IO_READ", err)

    def test_text_and_file_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["compile", "doc.json", "--text", "{}"])
        self.assertEqual(code, 2)
        self.assertIn("E_ARGS", err)

    def test_stdout_and_output_are_exclusive(self) -> None:
        code, _out, err = self.run_cli(["compile", "--text", "{}", "--stdout", "-o", "x.json"])
        self.assertEqual(code, 2)
        self.assertIn("mutually exclusive", err)

    def test_legend_to_stdout(self) -> None:
        code, out, err = self.run_cli(["legend", "--text", json.dumps(DOCUMENT), "--no-border"])
        self.assertEqual(code, 0, err)
        root = ET.fromstring(out)
        self.assertEqual(root.get("class"), "legends")
        self.assertIn("legend-category", out)
        self.assertNotIn('stroke-width="1"', out)

    def test_legend_file_default_path(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            src = Path(td) / "services.json"
            src.write_text(json.dumps(DOCUMENT))
            code, _out, err = self.run_cli(["legend", str(src), "--background", "#fafafa"])
            self.assertEqual(code, 0, err)
            svg_text = (Path(td) / "services.legend.svg").read_text()
            self.assertIn('fill="#fafafa"', svg_text)

    def test_unknown_legend_mapping(self) -> None:
        doc = dict(DOCUMENT, legends=[{"property": "stroke", "field": "status"}])
        code, _out, err = self.run_cli(["legend", "--text", json.dumps(doc)])
        self.assertEqual(code, 3)
        self.assertIn("E_LEGEND_CONFIG", err)

    def test_cheatsheet(self) -> None:
        code, out, _err = self.run_cli(["cheatsheet"])
        self.assertEqual(code, 0)
        self.assertIn("datadiag", out)
        self.assertIn("legends", out)


if __name__ == "__main__":
    unittest.main()
