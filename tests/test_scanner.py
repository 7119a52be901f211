"""Tests for scanner module."""

import os
import tempfile
from pathlib import Path

import pytest

from extractor.references import ModuleCall, ParsedModule, RemoteStateRef
from scanner.builder import build_dependency_graph
from scanner.changes import library_paths_for_changed_files, modules_for_changed_files
from scanner.config import (
    ConfigError,
    LibraryModulesConfig,
    ScanConfig,
    StructureConfig,
    config_from_dict,
    load_config,
    parse_pattern,
)
from scanner.discovery import DiscoveryError, Module, ModuleScanner, contains_source_files, scan_modules
from scanner.filter import (
    CompositeFilter,
    EnvironmentFilter,
    GlobFilter,
    RegionFilter,
    ServiceFilter,
    compile_glob,
)
from scanner.index import ModuleIndex


def write_module(root: Path, rel: str, filename: str = "main.tf") -> Path:
    directory = root / rel
    directory.mkdir(parents=True, exist_ok=True)
    (directory / filename).write_text("# module\n")
    return directory


@pytest.fixture
def repo():
    """A small monorepo with base modules, submodules and noise."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_module(root, "platform/stage/eu-central-1/vpc")
        write_module(root, "platform/stage/eu-central-1/eks")
        write_module(root, "platform/stage/eu-central-1/ec2")
        write_module(root, "platform/stage/eu-central-1/ec2/rabbitmq")
        write_module(root, "platform/stage/eu-central-1/ec2/redis")
        write_module(root, "platform/prod/eu-central-1/vpc")
        # Too deep, too shallow, hidden and without sources
        write_module(root, "platform/stage/eu-central-1/ec2/rabbitmq/nested")
        write_module(root, "platform/stage")
        write_module(root, "platform/stage/eu-central-1/.terraform/cache")
        (root / "platform/stage/eu-central-1/docs").mkdir(parents=True)
        (root / "platform/stage/eu-central-1/docs/README.md").write_text("docs\n")
        yield root


class TestModule:
    """Tests for module identity."""

    def test_base_module_properties(self):
        """Test that placeholders map to path segments."""
        m = Module.from_id("platform/stage/eu-central-1/vpc")

        assert m.id == "platform/stage/eu-central-1/vpc"
        assert m.service == "platform"
        assert m.environment == "stage"
        assert m.region == "eu-central-1"
        assert m.module == "vpc"
        assert m.submodule == ""
        assert m.name == "vpc"
        assert m.context == ("platform", "stage", "eu-central-1")
        assert not m.is_submodule()
        assert m.parent_id is None

    def test_submodule_properties(self):
        """Test submodule naming and parent ID."""
        m = Module.from_id("platform/stage/eu-central-1/ec2/rabbitmq")

        assert m.module == "ec2"
        assert m.submodule == "rabbitmq"
        assert m.name == "ec2/rabbitmq"
        assert m.is_submodule()
        assert m.parent_id == "platform/stage/eu-central-1/ec2"

    def test_custom_pattern(self):
        """Test a pattern without region."""
        m = Module.from_id("billing/prod/api", pattern="{service}/{environment}/{module}")

        assert m.service == "billing"
        assert m.region == ""
        assert m.module == "api"
        assert m.context == ("billing", "prod")

    def test_get_unknown_placeholder(self):
        """Test lookup of a placeholder not in the pattern."""
        m = Module.from_id("platform/stage/eu-central-1/vpc")
        assert m.get("team") == ""

    def test_equality_ignores_paths(self):
        """Test that identity is derived from segments only."""
        a = Module.from_id("s/e/r/vpc", root=Path("/one"))
        b = Module.from_id("s/e/r/vpc", root=Path("/two"))
        assert a == b
        assert hash(a) == hash(b)


class TestModuleScanner:
    """Tests for tree walking."""

    def test_scan_finds_modules(self, repo):
        """Test that base modules and submodules are discovered in order."""
        ids = [m.id for m in ModuleScanner(repo).scan()]

        assert ids == [
            "platform/prod/eu-central-1/vpc",
            "platform/stage/eu-central-1/ec2",
            "platform/stage/eu-central-1/ec2/rabbitmq",
            "platform/stage/eu-central-1/ec2/redis",
            "platform/stage/eu-central-1/eks",
            "platform/stage/eu-central-1/vpc",
        ]

    def test_scan_sets_paths(self, repo):
        """Test absolute and relative paths of discovered modules."""
        modules = {m.id: m for m in ModuleScanner(repo).scan()}
        m = modules["platform/stage/eu-central-1/ec2/rabbitmq"]

        assert m.path == repo.resolve() / "platform/stage/eu-central-1/ec2/rabbitmq"
        assert m.relative_path == "platform/stage/eu-central-1/ec2/rabbitmq"

    def test_scan_without_submodules(self, repo):
        """Test that disabling submodules stops at the pattern depth."""
        ids = [m.id for m in ModuleScanner(repo, allow_submodules=False).scan()]

        assert "platform/stage/eu-central-1/ec2" in ids
        assert not any(i.endswith("rabbitmq") for i in ids)

    def test_scan_depth_bounds(self, repo):
        """Test explicit depth bounds."""
        ids = [m.id for m in ModuleScanner(repo, min_depth=5, max_depth=6).scan()]

        assert ids == [
            "platform/stage/eu-central-1/ec2/rabbitmq",
            "platform/stage/eu-central-1/ec2/rabbitmq/nested",
            "platform/stage/eu-central-1/ec2/redis",
        ]

    def test_invalid_depth_bounds(self, repo):
        """Test that max below min is rejected."""
        with pytest.raises(ValueError):
            ModuleScanner(repo, min_depth=4, max_depth=3)

    def test_missing_root(self):
        """Test that an unreadable root is an error."""
        with pytest.raises(DiscoveryError):
            ModuleScanner("/nonexistent/path/for/sure").scan()

    def test_root_is_file(self, repo):
        """Test that a file root is an error."""
        file_root = repo / "file.txt"
        file_root.write_text("x")
        with pytest.raises(DiscoveryError):
            ModuleScanner(file_root).scan()

    def test_custom_extensions(self, repo):
        """Test that other source suffixes can mark modules."""
        write_module(repo, "platform/stage/eu-central-1/lambda", filename="main.hcl")

        default_ids = [m.id for m in scan_modules(repo)]
        hcl_ids = [m.id for m in scan_modules(repo, source_extensions={".hcl"})]

        assert "platform/stage/eu-central-1/lambda" not in default_ids
        assert hcl_ids == ["platform/stage/eu-central-1/lambda"]

    def test_scan_index(self, repo):
        """Test scanning and indexing in one step."""
        modules, index = ModuleScanner(repo).scan_index()
        assert len(index) == len(modules) == 6

    def test_contains_source_files(self, repo):
        """Test source file detection."""
        assert contains_source_files(repo / "platform/stage/eu-central-1/vpc")
        assert not contains_source_files(repo / "platform/stage/eu-central-1/docs")
        assert not contains_source_files(repo / "does-not-exist")


class TestModuleIndex:
    """Tests for lookups over discovered modules."""

    @pytest.fixture
    def index(self):
        return ModuleIndex(
            Module.from_id(i, root=Path("/repo"))
            for i in [
                "platform/stage/eu-central-1/vpc",
                "platform/stage/eu-central-1/ec2",
                "platform/stage/eu-central-1/ec2/rabbitmq",
                "platform/stage/eu-central-1/ec2/redis",
                "platform/prod/eu-central-1/vpc",
            ]
        )

    def test_by_id(self, index):
        """Test lookup by ID."""
        assert index.by_id("platform/stage/eu-central-1/vpc").environment == "stage"
        assert index.by_id("platform/dev/eu-central-1/vpc") is None
        assert "platform/prod/eu-central-1/vpc" in index

    def test_by_path(self, index):
        """Test lookup by absolute and relative path."""
        rel = "platform/stage/eu-central-1/ec2"
        assert index.by_path(rel).id == rel
        assert index.by_path(os.path.join("/repo", rel)).id == rel

    def test_by_name(self, index):
        """Test lookup by base and composite name."""
        assert len(index.by_name("vpc")) == 2
        assert [m.id for m in index.by_name("ec2/rabbitmq")] == ["platform/stage/eu-central-1/ec2/rabbitmq"]
        assert len(index.by_name("ec2")) == 3

    def test_children_and_parent(self, index):
        """Test parent/child navigation."""
        children = [m.id for m in index.children("platform/stage/eu-central-1/ec2")]
        assert children == [
            "platform/stage/eu-central-1/ec2/rabbitmq",
            "platform/stage/eu-central-1/ec2/redis",
        ]
        assert index.parent("platform/stage/eu-central-1/ec2/redis").id == "platform/stage/eu-central-1/ec2"
        assert index.parent("platform/stage/eu-central-1/vpc") is None

    def test_base_modules_and_submodules(self, index):
        """Test partitioning by submodule flag."""
        assert len(index.base_modules()) == 3
        assert len(index.submodules()) == 2

    def test_depths(self, index):
        """Test distinct depths, deepest first."""
        assert index.depths == [5, 4]

    def test_find_in_context(self, index):
        """Test name lookup restricted to a context."""
        rabbit = index.by_id("platform/stage/eu-central-1/ec2/rabbitmq")

        assert index.find_in_context("vpc", rabbit).id == "platform/stage/eu-central-1/vpc"
        assert index.find_in_context("redis", index.by_id("platform/stage/eu-central-1/ec2")).id == (
            "platform/stage/eu-central-1/ec2/redis"
        )
        assert index.find_in_context("eks", rabbit) is None

    def test_find_in_context_order(self):
        """Test submodule referencers prefer sibling submodules, base modules prefer siblings."""
        index = ModuleIndex(
            Module.from_id(i)
            for i in ["s/e/r/redis", "s/e/r/ec2", "s/e/r/ec2/redis", "s/e/r/ec2/rabbitmq"]
        )

        assert index.find_in_context("redis", index.by_id("s/e/r/ec2/rabbitmq")).id == "s/e/r/ec2/redis"
        assert index.find_in_context("redis", index.by_id("s/e/r/ec2")).id == "s/e/r/redis"

    def test_duplicate_ids(self):
        """Test that duplicate IDs are rejected."""
        with pytest.raises(ValueError):
            ModuleIndex([Module.from_id("a/b/c/d"), Module.from_id("a/b/c/d")])


class TestGlobFilter:
    """Tests for include/exclude filtering."""

    @pytest.mark.parametrize(
        "pattern,module_id,expected",
        [
            ("platform/*/eu-central-1/vpc", "platform/stage/eu-central-1/vpc", True),
            ("platform/*/vpc", "platform/stage/eu-central-1/vpc", False),
            ("**/vpc", "platform/stage/eu-central-1/vpc", True),
            ("platform/**", "platform/stage/eu-central-1/vpc", True),
            ("platform/stage/**/ec2", "platform/stage/eu-central-1/ec2", True),
            ("*/prod/*/*", "platform/stage/eu-central-1/vpc", False),
            ("platform/stage/eu-central-?/vpc", "platform/stage/eu-central-1/vpc", True),
            ("**/ec2", "platform/stage/eu-central-1/ec2/rabbitmq", True),
            ("vpc", "platform/stage/eu-central-1/vpc", False),
        ],
    )
    def test_compile_glob(self, pattern, module_id, expected):
        """Test glob semantics."""
        assert bool(compile_glob(pattern).match(module_id)) is expected

    def test_exclude(self):
        """Test that excluded modules are dropped."""
        f = GlobFilter(exclude=["*/prod/**"])
        assert f.apply_ids(["a/prod/r/vpc", "a/stage/r/vpc"]) == ["a/stage/r/vpc"]

    def test_include(self):
        """Test that only included modules pass."""
        f = GlobFilter(include=["**/vpc"])
        assert f.apply_ids(["a/prod/r/vpc", "a/prod/r/eks"]) == ["a/prod/r/vpc"]

    def test_exclude_wins(self):
        """Test that excludes override includes."""
        f = GlobFilter(exclude=["a/prod/**"], include=["**/vpc"])
        assert f.apply_ids(["a/prod/r/vpc", "a/stage/r/vpc"]) == ["a/stage/r/vpc"]

    def test_empty_filter(self):
        """Test that an empty filter keeps everything and is falsy."""
        f = GlobFilter()
        assert not f
        assert f.match("anything/at/all")

    def test_apply_modules(self):
        """Test filtering module objects."""
        modules = [Module.from_id("s/e/r/vpc"), Module.from_id("s/e/r/ec2/redis")]
        kept = GlobFilter(exclude=["**/ec2"]).apply(modules)
        assert [m.id for m in kept] == ["s/e/r/vpc"]


class TestFieldFilters:
    """Tests for service, environment, region and combined filters."""

    @pytest.fixture
    def modules(self):
        return [
            Module.from_id(i)
            for i in [
                "platform/stage/eu-central-1/vpc",
                "platform/prod/eu-central-1/vpc",
                "platform/prod/us-east-1/vpc",
                "billing/prod/eu-central-1/api",
                "billing/stage/eu-central-1/api/worker",
            ]
        ]

    def test_service_filter(self, modules):
        """Test selecting by service."""
        kept = CompositeFilter(ServiceFilter(["billing"])).apply(modules)
        assert [m.id for m in kept] == [
            "billing/prod/eu-central-1/api",
            "billing/stage/eu-central-1/api/worker",
        ]

    def test_environment_filter(self, modules):
        """Test selecting by one of several environments."""
        f = EnvironmentFilter(["stage", "dev"])
        assert [m.id for m in modules if f.match_module(m)] == [
            "platform/stage/eu-central-1/vpc",
            "billing/stage/eu-central-1/api/worker",
        ]

    def test_region_filter(self, modules):
        """Test selecting by region."""
        f = RegionFilter(["us-east-1"])
        assert [m.id for m in modules if f.match_module(m)] == ["platform/prod/us-east-1/vpc"]

    def test_empty_field_filter(self, modules):
        """Test that a filter without values keeps everything and is falsy."""
        f = ServiceFilter()
        assert not f
        assert all(f.match_module(m) for m in modules)

    def test_composite_and(self, modules):
        """Test that every filter must keep a module."""
        f = CompositeFilter(
            GlobFilter(exclude=["**/worker"]),
            ServiceFilter(["platform", "billing"]),
            EnvironmentFilter(["prod"]),
            RegionFilter(["eu-central-1"]),
        )
        assert [m.id for m in f.apply(modules)] == [
            "platform/prod/eu-central-1/vpc",
            "billing/prod/eu-central-1/api",
        ]

    def test_composite_truthiness(self):
        """Test that a composite of empty filters is falsy."""
        assert not CompositeFilter(GlobFilter(), ServiceFilter(), RegionFilter())
        assert CompositeFilter(GlobFilter(), EnvironmentFilter(["prod"]))
        assert not CompositeFilter()


class TestChanges:
    """Tests for mapping changed files to modules."""

    @pytest.fixture
    def index(self):
        return ModuleIndex(
            Module.from_id(i)
            for i in ["s/e/r/vpc", "s/e/r/ec2", "s/e/r/ec2/rabbitmq"]
        )

    def test_changed_files_to_modules(self, index):
        """Test attributing files to the deepest containing module."""
        files = [
            "s/e/r/vpc/main.tf",
            "./s/e/r/ec2/rabbitmq/variables.tf",
            "s/e/r/ec2/outputs.tf",
            "s/e/r/vpc/files/user-data.sh",
            "README.md",
            "s/e/r/unknown/main.tf",
        ]
        assert modules_for_changed_files(files, index) == [
            "s/e/r/ec2",
            "s/e/r/ec2/rabbitmq",
            "s/e/r/vpc",
        ]

    def test_no_changes(self, index):
        """Test an empty change set."""
        assert modules_for_changed_files([], index) == []

    def test_library_paths(self):
        """Test mapping changed files to library directories."""
        files = [
            "_modules/kafka/main.tf",
            "_modules/kafka/acl/main.tf",
            "_modules/kafka/acl/vars.tf",
            "s/e/r/vpc/main.tf",
        ]
        result = library_paths_for_changed_files(files, "/repo", ["_modules"])
        assert result == ["/repo/_modules/kafka", "/repo/_modules/kafka/acl"]

    def test_library_paths_without_roots(self):
        """Test that nothing matches without library roots."""
        assert library_paths_for_changed_files(["_modules/kafka/main.tf"], "/repo", []) == []


class TestConfig:
    """Tests for configuration loading."""

    def test_parse_pattern(self):
        """Test placeholder extraction."""
        assert parse_pattern("{service}/{environment}/{region}/{module}") == [
            "service", "environment", "region", "module",
        ]
        assert parse_pattern(["service", "{module}"]) == ["service", "module"]

    @pytest.mark.parametrize("pattern", ["service/{module}", "", "{a}/{a}"])
    def test_invalid_pattern(self, pattern):
        """Test rejection of malformed patterns."""
        with pytest.raises(ConfigError):
            parse_pattern(pattern)

    def test_structure_defaults(self):
        """Test depth defaults derived from the pattern."""
        structure = StructureConfig()
        assert structure.resolved_min_depth == 4
        assert structure.resolved_max_depth == 5

        structure = StructureConfig(allow_submodules=False)
        assert structure.resolved_max_depth == 4

    def test_structure_validate(self):
        """Test depth validation."""
        with pytest.raises(ConfigError):
            StructureConfig(min_depth=5, max_depth=3).validate()
        with pytest.raises(ConfigError):
            StructureConfig(min_depth=-1).validate()

    def test_library_resolve(self):
        """Test library roots resolved against the repository root."""
        config = LibraryModulesConfig(paths=["_modules", "shared/libs"])
        assert config.resolve(Path("/repo")) == [Path("/repo/_modules"), Path("/repo/shared/libs")]

    def test_config_from_dict(self):
        """Test building a configuration from a mapping."""
        config = config_from_dict({
            "structure": {"pattern": "{service}/{environment}/{module}", "allow_submodules": False},
            "library_modules": {"paths": ["_modules"]},
            "exclude": ["*/sandbox/**"],
            "max_workers": 4,
            "unrelated": {"ignored": True},
        })

        assert config.structure.placeholders == ["service", "environment", "module"]
        assert config.structure.resolved_max_depth == 3
        assert config.library_modules.paths == ["_modules"]
        assert config.exclude == ["*/sandbox/**"]
        assert config.include == []
        assert config.max_workers == 4

    def test_config_selection_keys(self):
        """Test service, environment and region selection keys."""
        config = config_from_dict({
            "services": ["platform"],
            "environments": ["stage", "prod"],
            "regions": ["eu-central-1"],
        })

        assert config.services == ["platform"]
        assert config.environments == ["stage", "prod"]
        assert config.regions == ["eu-central-1"]

    def test_config_from_empty(self):
        """Test defaults for an empty document."""
        config = config_from_dict(None)
        assert config == ScanConfig()

    @pytest.mark.parametrize(
        "data",
        [
            ["not", "a", "mapping"],
            {"structure": "flat"},
            {"exclude": "*/prod/**"},
            {"max_workers": 0},
            {"max_workers": "many"},
            {"structure": {"allow_submodules": "false"}},
            {"structure": {"allow_submodules": 0}},
            {"services": "platform"},
        ],
    )
    def test_invalid_config(self, data):
        """Test rejection of malformed configuration."""
        with pytest.raises(ConfigError):
            config_from_dict(data)

    def test_load_config(self):
        """Test loading YAML from disk."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "stackmap.yaml"
            path.write_text(
                "structure:\n"
                "  pattern: \"{service}/{environment}/{region}/{module}\"\n"
                "library_modules:\n"
                "  paths:\n"
                "    - _modules\n"
                "include:\n"
                "  - \"platform/**\"\n"
            )
            config = load_config(path)

        assert config.library_modules.paths == ["_modules"]
        assert config.include == ["platform/**"]

    def test_load_config_errors(self):
        """Test unreadable and unparsable files."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ConfigError):
                load_config(Path(tmpdir) / "missing.yaml")

            broken = Path(tmpdir) / "broken.yaml"
            broken.write_text("structure: [unclosed\n")
            with pytest.raises(ConfigError):
                load_config(broken)


class TestBuilder:
    """Tests for the end-to-end graph build."""

    def test_build(self, repo):
        """Test discovery, extraction and graph construction together."""
        write_module(repo, "_modules/queue")

        parsed = {
            "platform/stage/eu-central-1/eks": ParsedModule(
                remote_states=[RemoteStateRef("vpc", "s3", "${local.service}/${local.environment}/${local.region}/vpc/terraform.tfstate")],
            ),
            "platform/stage/eu-central-1/ec2/rabbitmq": ParsedModule(
                remote_states=[
                    RemoteStateRef("vpc", "s3", "vpc"),
                    RemoteStateRef("redis", "s3", "redis"),
                    RemoteStateRef("missing", "s3", "nothing/here"),
                ],
                module_calls=[ModuleCall("queue", "../../../../../_modules/queue")],
            ),
        }

        def parse(module):
            return parsed.get(module.id, ParsedModule())

        config = ScanConfig(library_modules=LibraryModulesConfig(paths=["_modules"]), max_workers=3)
        result = build_dependency_graph(repo, parse, config)

        graph = result.graph
        assert len(graph) == 6
        assert sorted(graph.get_dependencies("platform/stage/eu-central-1/ec2/rabbitmq")) == [
            "platform/stage/eu-central-1/ec2/redis",
            "platform/stage/eu-central-1/vpc",
        ]
        assert graph.get_dependencies("platform/stage/eu-central-1/eks") == ["platform/stage/eu-central-1/vpc"]
        assert [d.kind for d in result.diagnostics] == ["unmatched-reference"]

        library = str((repo / "_modules/queue").resolve())
        assert graph.get_affected_by_library_changes([library]) == ["platform/stage/eu-central-1/ec2/rabbitmq"]

    def test_build_with_filter(self, repo):
        """Test that filtered modules are neither nodes nor targets."""
        parsed = {
            "platform/stage/eu-central-1/eks": ParsedModule(
                remote_states=[RemoteStateRef("vpc", "s3", "vpc")],
            ),
        }

        result = build_dependency_graph(
            repo,
            lambda m: parsed.get(m.id, ParsedModule()),
            ScanConfig(exclude=["**/vpc"]),
        )

        assert "platform/stage/eu-central-1/vpc" not in result.graph
        assert result.graph.edge_count() == 0
        assert len(result.diagnostics) == 1

    def test_build_with_environment_selection(self, repo):
        """Test that environment selection narrows the graph."""
        result = build_dependency_graph(
            repo,
            lambda m: ParsedModule(),
            ScanConfig(services=["platform"], environments=["prod"]),
        )

        assert sorted(result.graph.nodes) == ["platform/prod/eu-central-1/vpc"]

    def test_build_missing_root(self):
        """Test that discovery errors propagate."""
        with pytest.raises(DiscoveryError):
            build_dependency_graph("/nonexistent/path/for/sure", lambda m: ParsedModule())
