import pytest
import yaml

from exceptions import ManifestError
from manifest import NO_VERSION, merge_dependencies, parse_manifest
from storage import YamlCodec

codec = YamlCodec()


class TestParseManifest:
    def test_versions_stay_strings(self):
        entries = parse_manifest(b"- Name: SpringCollab\n  Version: 1.10\n", codec)

        assert len(entries) == 1
        assert entries[0].name == "SpringCollab"
        assert entries[0].version == "1.10"

    def test_missing_version(self):
        entries = parse_manifest(b"- Name: Helper\n", codec)

        assert entries[0].version == NO_VERSION

    def test_dependencies(self):
        raw = (
            b"- Name: A\n"
            b"  Version: 1.0.0\n"
            b"  Dependencies:\n"
            b"    - Name: Everest\n"
            b"      Version: 1.2707.0\n"
            b"    - Name: Helper\n"
            b"  OptionalDependencies:\n"
            b"    - Name: Extras\n"
            b"      Version: 2.0\n"
        )
        entry = parse_manifest(raw, codec)[0]

        assert [(d.name, d.version) for d in entry.dependencies] == [
            ("Everest", "1.2707.0"),
            ("Helper", NO_VERSION),
        ]
        assert [(d.name, d.version) for d in entry.optional_dependencies] == [
            ("Extras", "2.0")
        ]

    def test_not_a_list(self):
        with pytest.raises(ManifestError):
            parse_manifest(b"Name: A\n", codec)

    def test_entry_without_name(self):
        with pytest.raises(ManifestError):
            parse_manifest(b"- Version: 1.0.0\n", codec)

    def test_invalid_yaml(self):
        with pytest.raises(yaml.YAMLError):
            parse_manifest(b"- Name: [unclosed\n", codec)


class TestMergeDependencies:
    def test_skips_mods_of_the_same_manifest(self):
        raw = (
            b"- Name: A\n"
            b"  Dependencies:\n"
            b"    - Name: B\n"
            b"    - Name: Everest\n"
            b"      Version: 1.0.0\n"
            b"- Name: B\n"
            b"  Dependencies:\n"
            b"    - Name: Everest\n"
            b"      Version: 9.9.9\n"
            b"    - Name: C\n"
            b"  OptionalDependencies:\n"
            b"    - Name: A\n"
            b"    - Name: D\n"
            b"      Version: 0.1\n"
        )

        dependencies, optional = merge_dependencies(parse_manifest(raw, codec))

        assert dependencies == {"Everest": "1.0.0", "C": NO_VERSION}
        assert optional == {"D": "0.1"}

    def test_empty(self):
        assert merge_dependencies([]) == ({}, {})
