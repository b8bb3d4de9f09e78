from __future__ import annotations

import pytest

from tracemark.analysis.identifiers import Identifier
from tracemark.analysis.registry_loader import (
    iter_declarations,
    load,
    parse_concern_registry,
    read_concern_registry,
    read_spec_documents,
)
from tracemark.config import DEFAULT_CONCERN_IDS
from tracemark.exceptions import DuplicateRequirementError, RegistryLoadError

from tests.conftest import CACHE_SPEC


def test_declaration_contexts_register_requirements(cache_registry) -> None:
    requirements = {
        requirement.id.value: requirement
        for requirement in cache_registry.sorted_requirements()
    }
    assert sorted(requirements) == [
        "SPEC-CACHE-001",
        "SPEC-CACHE-002",
        "SPEC-CACHE-003",
        "SPEC-CACHE-004",
    ]
    assert requirements["SPEC-CACHE-001"].description == "Evict expired cache entries"
    assert requirements["SPEC-CACHE-001"].location == "docs/specs/cache.md:5"
    assert requirements["SPEC-CACHE-003"].description == "Encrypt cached secrets"
    assert requirements["SPEC-CACHE-004"].source_line == 14


def test_concern_tags_attach_to_the_current_declaration(cache_registry) -> None:
    tags = {
        requirement.id.value: requirement.concern_tags
        for requirement in cache_registry.sorted_requirements()
    }
    assert tags["SPEC-CACHE-001"] == frozenset()
    assert tags["SPEC-CACHE-002"] == frozenset({"OBS"})
    assert tags["SPEC-CACHE-003"] == frozenset({"SEC"})
    assert tags["SPEC-CACHE-004"] == frozenset({"REL"})


def test_references_in_prose_are_not_declarations() -> None:
    text = (
        "# Auth\n"
        "\n"
        "This document builds on SPEC-CACHE-001 and TASK-OLD-1.\n"
        "**SPEC-AUTH-001**: Users log in with a password\n"
        "See also SPEC-AUTH-002 which is defined elsewhere.\n"
    )
    registry = load({"docs/auth.md": text})
    assert list(registry.requirements) == [Identifier("SPEC-AUTH-001")]


def test_metadata_id_line_uses_enclosing_heading() -> None:
    text = (
        "## Password reset\n"
        "ID: SPEC-AUTH-003\n"
        "Concerns: SEC, CONCERN-REL\n"
        "\n"
        "### SPEC-AUTH-004: Lockout\n"
        "- **ID:** `SPEC-AUTH-004`\n"
    )
    requirements = list(iter_declarations("docs/auth.md", text))
    assert [(item.id.value, item.description) for item in requirements] == [
        ("SPEC-AUTH-003", "Password reset"),
        ("SPEC-AUTH-004", "Lockout"),
    ]
    assert requirements[0].concern_tags == frozenset({"SEC", "REL"})


def test_concern_declarations_are_tagged_with_their_concern() -> None:
    registry = load({"docs/concerns.md": "**CONCERN-SEC-001**: Secrets never logged\n"})
    requirement = registry.requirement(Identifier("CONCERN-SEC-001"))
    assert requirement is not None
    assert requirement.concern_tags == frozenset({"SEC"})


def test_duplicate_across_documents_names_both_locations() -> None:
    with pytest.raises(DuplicateRequirementError) as excinfo:
        load(
            {
                "docs/b.md": "\n\n**SPEC-AUTH-001**: Second\n",
                "docs/a.md": "**SPEC-AUTH-001**: First\n",
            }
        )
    error = excinfo.value
    assert error.requirement_id == "SPEC-AUTH-001"
    assert error.first == ("docs/a.md", 1)
    assert error.second == ("docs/b.md", 3)
    assert "docs/a.md:1" in str(error) and "docs/b.md:3" in str(error)


def test_duplicate_within_one_document_is_rejected() -> None:
    with pytest.raises(DuplicateRequirementError):
        load({"docs/a.md": "**SPEC-X-1**: one\n\n**SPEC-X-1**: again\n"})


def test_traceability_table_and_later_headings_are_references() -> None:
    text = (
        "# Auth\n"
        "\n"
        "- **SPEC-AUTH-001**: Log users in\n"
        "\n"
        "## Traceability\n"
        "\n"
        "| Requirement | Code |\n"
        "| --- | --- |\n"
        "| SPEC-AUTH-001 | src/auth.rs |\n"
        "\n"
        "| ID | Description |\n"
        "| --- | --- |\n"
        "| SPEC-AUTH-001 | Log users in |\n"
        "| SPEC-AUTH-002 | Log users out |\n"
        "\n"
        "## SPEC-AUTH-001 tests\n"
        "Concerns: SEC\n"
    )
    registry = load({"docs/specs/auth.md": text})
    requirements = registry.sorted_requirements()
    assert [(item.id.value, item.source_line) for item in requirements] == [
        ("SPEC-AUTH-001", 3),
        ("SPEC-AUTH-002", 14),
    ]
    assert requirements[0].concern_tags == frozenset()


def test_table_without_id_header_declares_nothing() -> None:
    text = "| Name | Notes |\n| --- | --- |\n| SPEC-X-1 | mentioned only |\n"
    assert list(iter_declarations("docs/a.md", text)) == []


def test_placeholders_come_from_configuration() -> None:
    registry = load({}, placeholders=("SPEC-LATER",))
    assert registry.placeholders == frozenset({Identifier("SPEC-LATER")})
    assert registry.requirements == {}
    assert load({}).is_placeholder(Identifier("SPEC-PENDING"))


def test_concern_registry_parsing_and_defaults() -> None:
    assert tuple(entry.code for entry in parse_concern_registry(None)) == DEFAULT_CONCERN_IDS
    assert tuple(entry.code for entry in parse_concern_registry("# empty\n")) == DEFAULT_CONCERN_IDS
    entries = parse_concern_registry("[concerns]\nSEC = \"Security\"\nCONCERN-AUD: Auditability\n")
    assert [(entry.code, entry.description, entry.line) for entry in entries] == [
        ("SEC", "Security", 2),
        ("AUD", "Auditability", 3),
    ]


def test_explicit_concern_registry_registers_concern_requirements() -> None:
    registry = load(
        {"docs/a.md": "**SPEC-A-1**: Audit trail\nConcerns: AUD\n"},
        "AUD = Auditability\n",
        concern_registry_path="concerns.toml",
    )
    concern = registry.requirement(Identifier("CONCERN-AUD"))
    assert concern is not None
    assert concern.location == "concerns.toml:1"
    assert registry.concern_ids == ("AUD",)
    assert registry.requirement(Identifier("SPEC-A-1")).concern_tags == frozenset({"AUD"})


def test_registry_is_immutable(cache_registry) -> None:
    with pytest.raises(TypeError):
        cache_registry.requirements[Identifier("SPEC-NEW-1")] = None  # type: ignore[index]


def test_read_spec_documents_keys_are_relative(write_tree) -> None:
    root = write_tree(
        {
            "docs/specs/cache.md": CACHE_SPEC,
            "docs/specs/nested/auth.md": "**SPEC-AUTH-001**: Login\n",
            "docs/specs/notes.txt": "**SPEC-X-1**: ignored\n",
        }
    )
    documents = read_spec_documents(root, ["docs/specs"])
    assert sorted(documents) == ["docs/specs/cache.md", "docs/specs/nested/auth.md"]


def test_missing_spec_directory_is_fatal(tmp_path) -> None:
    with pytest.raises(RegistryLoadError, match="not found"):
        read_spec_documents(tmp_path, ["docs/specs"])


def test_missing_concern_registry_is_fatal(tmp_path) -> None:
    assert read_concern_registry(tmp_path, None) is None
    with pytest.raises(RegistryLoadError):
        read_concern_registry(tmp_path, "concerns.toml")
