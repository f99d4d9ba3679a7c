import zipfile

from plugin_entities import (
    PluginEntities,
    extract_ahorn_entities,
    extract_loenn_entities,
    has_ahorn_plugins,
    has_loenn_plugins,
    scan_ahorn_archive,
    scan_loenn_archive,
)

from conftest import make_zip_bytes

AHORN_ENTITY = """module MyModThing
using ..Ahorn, Maple
@mapdef Entity "MyMod/Thing" Thing(x::Integer, y::Integer)
@mapdefdata Trigger "MyMod/Other" Other(x::Integer)
end
"""

MAPLE_STYLE = """@mapdef Effect "snowFg" SnowFg()
Entity("spinner", x=x, y=y)
"""

LOENN_LANG = """entities.MyMod/Thing.placements.name.thing=Thing
entities.MyMod/Thing.attributes.description.speed=Speed
triggers.MyMod/Other.placements.name.other=Other
style.effects.MyMod/Rain.name=Rain
# comment
"""


class TestAhorn:
    def test_classified_by_directory(self):
        entities = PluginEntities()
        extract_ahorn_entities(AHORN_ENTITY.splitlines(), "Ahorn/entities/thing.jl", entities)
        extract_ahorn_entities(MAPLE_STYLE.splitlines(), "Ahorn/effects/vanilla.jl", entities)

        assert entities.entities == ["MyMod/Thing", "MyMod/Other"]
        assert entities.effects == ["snowFg", "spinner"]
        assert entities.triggers == []

    def test_other_directories_ignored(self):
        entities = PluginEntities()
        extract_ahorn_entities(AHORN_ENTITY.splitlines(), "Ahorn/lang/en_gb.lang", entities)

        assert entities.counts() == (0, 0, 0)

    def test_scan_archive(self, tmp_path):
        path = tmp_path / "mod.zip"
        path.write_bytes(
            make_zip_bytes(
                {
                    "Ahorn/triggers/other.jl": AHORN_ENTITY,
                    "Ahorn/lang/en_gb.lang": "placements.entities.x=y",
                    "everest.yaml": "- Name: A",
                }
            )
        )
        file_list = ["Ahorn/triggers/other.jl", "Ahorn/lang/en_gb.lang", "everest.yaml"]

        assert has_ahorn_plugins(file_list)
        with zipfile.ZipFile(path) as archive:
            result = scan_ahorn_archive(archive, file_list)

        assert result.to_dict() == {
            "Entities": [],
            "Triggers": ["MyMod/Thing", "MyMod/Other"],
            "Effects": [],
        }


class TestLoenn:
    def test_ids_are_deduplicated(self):
        result = extract_loenn_entities(LOENN_LANG.splitlines())

        assert result.entities == ["MyMod/Thing"]
        assert result.triggers == ["MyMod/Other"]
        assert result.effects == ["MyMod/Rain"]

    def test_scan_archive(self, tmp_path):
        path = tmp_path / "mod.zip"
        path.write_bytes(make_zip_bytes({"Loenn/lang/en_gb.lang": LOENN_LANG}))

        assert has_loenn_plugins(["Loenn/lang/en_gb.lang"])
        assert not has_loenn_plugins(["Loenn/entities/thing.lua"])
        with zipfile.ZipFile(path) as archive:
            assert scan_loenn_archive(archive).counts() == (1, 1, 1)
