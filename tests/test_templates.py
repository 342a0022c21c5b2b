from __future__ import annotations

import sys
import unittest
from dataclasses import dataclass
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from datadiag.errors import MissingDataSourceError, TemplateExpansionError, TemplateRecursionError
from datadiag.mappings import CategoryMapping, ThresholdMapping
from datadiag.templates import (
    Conditional,
    EdgeBlueprint,
    ExpandOptions,
    Loop,
    NodeBlueprint,
    Template,
    TemplateCall,
    expand,
    expand_all,
)

GRADES = ThresholdMapping(
    "fill", "score", [(80, "#22c55e"), (60, "#eab308"), (0, "#ef4444")]
)


@dataclass(frozen=True)
class _UnknownMapping:
    property: str = "fill"
    field: str = "score"


class FilterAndLimitTests(unittest.TestCase):
    sources = {
        "users": [
            {"name": "A", "active": True},
            {"name": "B", "active": False},
            {"name": "C", "active": "yes"},
            {"name": "D"},
        ]
    }

    def test_filter_keeps_truthy_records_in_order(self) -> None:
        template = Template(
            id="users",
            source="users",
            body=[NodeBlueprint(id="${user.name}", label="${name}")],
            filter="active",
            alias="user",
        )
        result = expand(template, self.sources)
        self.assertEqual([node.id for node in result.nodes], ["A", "C"])
        self.assertEqual(result.diagnostics, [])

    def test_filter_accepts_expression_syntax(self) -> None:
        template = Template("users", "users", [NodeBlueprint(id="${name}")], filter="${active}")
        self.assertEqual([node.id for node in expand(template, self.sources).nodes], ["A", "C"])

    def test_limit_applies_after_filter(self) -> None:
        template = Template("users", "users", [NodeBlueprint(id="${name}")], filter="active", limit=1)
        self.assertEqual([node.id for node in expand(template, self.sources).nodes], ["A"])

    def test_non_positive_limit_is_ignored(self) -> None:
        template = Template("users", "users", [NodeBlueprint(id="${name}")], limit=0)
        self.assertEqual(len(expand(template, self.sources).nodes), 4)

    def test_index_and_length_are_in_scope(self) -> None:
        template = Template(
            "users", "users", [NodeBlueprint(id="${name}", label="${index}/${length}")], filter="active"
        )
        labels = [node.properties["label"] for node in expand(template, self.sources).nodes]
        self.assertEqual(labels, ["0/2", "1/2"])

    def test_unknown_source_raises(self) -> None:
        template = Template("orphans", "nowhere", [NodeBlueprint()])
        with self.assertRaises(MissingDataSourceError) as ctx:
            expand(template, self.sources)
        self.assertIn('"nowhere"', str(ctx.exception))

    def test_empty_source_expands_to_nothing(self) -> None:
        template = Template("users", "users", [NodeBlueprint()])
        result = expand(template, {"users": []})
        self.assertEqual(result.elements, [])


class StyledExpansionTests(unittest.TestCase):
    def test_students_get_threshold_fills(self) -> None:
        sources = {
            "students": [
                {"name": "Ada", "score": 95},
                {"name": "Ben", "score": 70},
                {"name": "Cy", "score": 65},
                {"name": "Di", "score": 10},
            ]
        }
        template = Template(
            "grades",
            "students",
            [NodeBlueprint(id="${name}", label="${name}: ${score}", styles=[GRADES])],
        )
        nodes = expand(template, sources).nodes
        self.assertEqual(
            [node.style["fill"] for node in nodes], ["#22c55e", "#eab308", "#eab308", "#ef4444"]
        )
        self.assertEqual(nodes[0].properties["label"], "Ada: 95")
        self.assertEqual(nodes[0].template_id, "grades")

    def test_style_mapping_overrides_literal_property(self) -> None:
        template = Template(
            "grades",
            "students",
            [NodeBlueprint(id="${name}", properties={"fill": "black", "rx": 4}, styles=[GRADES])],
        )
        node = expand(template, {"students": [{"name": "Ada", "score": 90}]}).nodes[0]
        self.assertEqual(node.style, {"fill": "#22c55e"})
        self.assertEqual(node.properties, {"rx": 4})

    def test_missing_field_omits_style(self) -> None:
        template = Template("grades", "students", [NodeBlueprint(id="${name}", styles=[GRADES])])
        node = expand(template, {"students": [{"name": "Ada"}]}).nodes[0]
        self.assertEqual(node.style, {})

    def test_text_properties_stringify_and_others_keep_type(self) -> None:
        template = Template(
            "grades",
            "students",
            [NodeBlueprint(id="${name}", properties={"tooltip": "${score}", "weight": "${score}"})],
        )
        node = expand(template, {"students": [{"name": "Ada", "score": 95}]}).nodes[0]
        self.assertEqual(node.properties["tooltip"], "95")
        self.assertEqual(node.properties["weight"], 95)

    def test_mapping_failure_becomes_diagnostic(self) -> None:
        template = Template(
            "grades", "students", [NodeBlueprint(id="${name}", styles=[_UnknownMapping()])]
        )
        result = expand(template, {"students": [{"name": "Ada", "score": 1}]})
        self.assertEqual(result.elements, [])
        self.assertEqual(len(result.diagnostics), 1)
        self.assertEqual(result.diagnostics[0].code, "E_MAPPING")
        self.assertEqual(result.diagnostics[0].property, "fill")
        self.assertEqual(result.diagnostics[0].index, 0)

    def test_mapping_failure_raises_when_strict(self) -> None:
        template = Template(
            "grades", "students", [NodeBlueprint(id="${name}", styles=[_UnknownMapping()])]
        )
        with self.assertRaises(TemplateExpansionError) as ctx:
            expand(template, {"students": [{"name": "Ada"}]}, options=ExpandOptions(strict=True))
        self.assertEqual(ctx.exception.property, "fill")


class NodeIdTests(unittest.TestCase):
    def test_generated_ids_use_template_counter(self) -> None:
        template = Template("box", "rows", [NodeBlueprint()])
        nodes = expand(template, {"rows": [{}, {}, {}]}).nodes
        self.assertEqual([node.id for node in nodes], ["box_0", "box_1", "box_2"])

    def test_label_is_slugged_when_no_id(self) -> None:
        template = Template("box", "rows", [NodeBlueprint(label="Hello, ${name}!")])
        nodes = expand(template, {"rows": [{"name": "World"}]}).nodes
        self.assertEqual(nodes[0].id, "Hello_World")

    def test_duplicate_ids_get_suffixes(self) -> None:
        template = Template("box", "rows", [NodeBlueprint(id="${team}")])
        nodes = expand(template, {"rows": [{"team": "x"}, {"team": "x"}, {"team": "x"}]}).nodes
        self.assertEqual([node.id for node in nodes], ["x", "x-1", "x-2"])


class ControlFlowTests(unittest.TestCase):
    def test_loop_binds_item_and_position_variables(self) -> None:
        template = Template(
            "teams",
            "teams",
            [
                Loop(
                    "member",
                    "members",
                    [NodeBlueprint(id="${member}", label="${member_index} ${member_first} ${member_last}")],
                )
            ],
        )
        nodes = expand(template, {"teams": [{"members": ["x", "y"]}]}).nodes
        self.assertEqual([node.id for node in nodes], ["x", "y"])
        self.assertEqual(
            [node.properties["label"] for node in nodes], ["0 true false", "1 false true"]
        )

    def test_loop_over_non_sequence_is_diagnosed(self) -> None:
        template = Template("teams", "teams", [Loop("m", "members", [NodeBlueprint()])])
        result = expand(template, {"teams": [{"members": "x"}]})
        self.assertEqual(result.elements, [])
        self.assertEqual([item.code for item in result.diagnostics], ["E_LOOP_COLLECTION"])

    def test_conditional_picks_branch(self) -> None:
        template = Template(
            "people",
            "people",
            [
                Conditional(
                    "vip",
                    [NodeBlueprint(id="vip-${name}")],
                    [NodeBlueprint(id="guest-${name}")],
                )
            ],
        )
        nodes = expand(template, {"people": [{"name": "a", "vip": True}, {"name": "b"}]}).nodes
        self.assertEqual([node.id for node in nodes], ["vip-a", "guest-b"])

    def test_template_call_passes_parameters(self) -> None:
        badge = Template("badge", "unused", [NodeBlueprint(id="badge-${title}", shape="circle")])
        main = Template("people", "people", [TemplateCall("badge", {"title": "${name}"})])
        result = expand(main, {"people": [{"name": "ada"}]}, registry={"badge": badge})
        self.assertEqual([(node.id, node.shape) for node in result.nodes], [("badge-ada", "circle")])
        self.assertEqual(result.nodes[0].template_id, "people")

    def test_unknown_template_call_is_diagnosed(self) -> None:
        main = Template("people", "people", [TemplateCall("ghost")])
        result = expand(main, {"people": [{}]})
        self.assertEqual([item.code for item in result.diagnostics], ["E_TEMPLATE_CALL"])

    def test_runaway_recursion_raises(self) -> None:
        looping = Template("loop", "rows", [TemplateCall("loop")])
        with self.assertRaises(TemplateRecursionError):
            expand(looping, {"rows": [{}]}, registry={"loop": looping})


class EdgeTests(unittest.TestCase):
    def test_edges_get_endpoint_ids(self) -> None:
        template = Template(
            "links",
            "links",
            [EdgeBlueprint(source="${from}", target="${to}", edge_type="depends", label="${kind}")],
        )
        edges = expand(
            template, {"links": [{"from": "a", "to": "b", "kind": "hard"}, {"from": "a", "to": "b"}]}
        ).edges
        self.assertEqual([edge.id for edge in edges], ["a->b", "a->b-1"])
        self.assertEqual(edges[0].edge_type, "depends")
        self.assertEqual(edges[0].properties["label"], "hard")

    def test_undefined_endpoint_is_diagnosed(self) -> None:
        template = Template("links", "links", [EdgeBlueprint(source="${from}", target="${to}")])
        result = expand(template, {"links": [{"from": "a"}]})
        self.assertEqual(result.edges, [])
        self.assertEqual([item.code for item in result.diagnostics], ["E_EDGE_ENDPOINT"])


class NavigationTests(unittest.TestCase):
    template = Template("people", "people", [NodeBlueprint(id="${name}", label="${manager.name}")])
    sources = {"people": [{"name": "a"}, {"name": "b", "manager": {"name": "boss"}}]}

    def test_safe_navigation_renders_empty_text(self) -> None:
        nodes = expand(self.template, self.sources).nodes
        self.assertEqual([node.properties["label"] for node in nodes], ["", "boss"])

    def test_default_value_fills_missing_paths(self) -> None:
        nodes = expand(self.template, self.sources, options=ExpandOptions(default="?")).nodes
        self.assertEqual(nodes[0].properties["label"], "?")

    def test_failed_path_skips_record_without_safe_navigation(self) -> None:
        result = expand(self.template, self.sources, options=ExpandOptions(safe_navigation=False))
        self.assertEqual([node.id for node in result.nodes], ["b"])
        self.assertEqual([item.code for item in result.diagnostics], ["E_PATH"])
        self.assertEqual(result.diagnostics[0].index, 0)

    def test_failed_path_raises_when_strict(self) -> None:
        options = ExpandOptions(safe_navigation=False, strict=True)
        with self.assertRaises(TemplateExpansionError) as ctx:
            expand(self.template, self.sources, options=options)
        self.assertEqual(ctx.exception.index, 0)


class SelfReferenceTests(unittest.TestCase):
    def test_self_referencing_record_expands(self) -> None:
        record = {"name": "a"}
        record["self"] = record
        template = Template(
            "rows",
            "rows",
            [NodeBlueprint(id="${self.self.name}", label="${self}", properties={"ref": "${self}"})],
        )
        result = expand(template, {"rows": [record]})
        self.assertEqual(result.diagnostics, [])
        node = result.nodes[0]
        self.assertEqual(node.id, "a")
        self.assertEqual(node.properties["label"], '{"name":"a","self":""}')
        self.assertIs(node.properties["ref"], record)


class ScopeTests(unittest.TestCase):
    def test_bindings_shadow_same_named_fields(self) -> None:
        template = Template("rows", "rows", [NodeBlueprint(id="${item.item}", label="${name}")])
        node = expand(template, {"rows": [{"item": "widget", "name": "w"}]}).nodes[0]
        self.assertEqual(node.id, "widget")

    def test_alias_reaches_a_field_named_item(self) -> None:
        template = Template("rows", "rows", [NodeBlueprint(id="${row.item}")], alias="row")
        node = expand(template, {"rows": [{"item": "widget"}]}).nodes[0]
        self.assertEqual(node.id, "widget")


class ExpandAllTests(unittest.TestCase):
    def test_templates_share_a_registry_and_keep_order(self) -> None:
        label = Template("label", "tags", [NodeBlueprint(id="tag-${name}")])
        people = Template(
            "people",
            "people",
            [NodeBlueprint(id="${name}", styles=[CategoryMapping("fill", "team", {"red": "#ff0000"})]),
             TemplateCall("label")],
        )
        result = expand_all(
            [people, label],
            {"people": [{"name": "ada", "team": "red"}], "tags": [{"name": "t"}]},
        )
        self.assertEqual([node.id for node in result.nodes], ["ada", "tag-ada", "tag-t"])
        self.assertEqual(result.nodes[0].style, {"fill": "#ff0000"})


if __name__ == "__main__":
    unittest.main()
