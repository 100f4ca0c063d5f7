"""
Gene set provider and GMT parsing tests
"""
import json
from types import SimpleNamespace

import pytest

from gene_sets import provider as provider_module
from gene_sets.gmt import read_gmt, read_gmt_dir
from gene_sets.provider import GeneSetCollection, GeneSetProvider, split_go_term
from conftest import FakeMapper


KEGG_RESPONSES = {
    'list/pathway/hsa': (
        "path:hsa04010\tMAPK signaling pathway - Homo sapiens (human)\n"
        "hsa04210\tApoptosis - Homo sapiens (human)\n"
    ),
    'link/hsa/pathway': (
        "path:hsa04010\thsa:1017\n"
        "path:hsa04010\thsa:7157\n"
        "path:hsa04210\thsa:7157\n"
        "path:hsa04210\thsa:7157\n"
    ),
}


@pytest.fixture
def fake_kegg(monkeypatch):
    calls = []

    def fake_get(url, timeout=None):
        calls.append(url)
        operation = url.replace(provider_module.KEGG_REST_URL + '/', '')
        return SimpleNamespace(text=KEGG_RESPONSES[operation], raise_for_status=lambda: None)

    monkeypatch.setattr(provider_module.requests, 'get', fake_get)
    return calls


def write_gmt(path, lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text('\n'.join(lines) + '\n')


class TestGmt:
    """Test GMT parsing."""

    def test_read_gmt(self, tmp_path):
        path = tmp_path / "sets.gmt"
        write_gmt(path, [
            "SET_A\tdesc\tTP53\tCDK2\tTP53",
            "broken line",
            "SET_B\thttp://example\tTNF",
        ])

        gene_sets = read_gmt(str(path))

        assert gene_sets == {'SET_A': ['TP53', 'CDK2'], 'SET_B': ['TNF']}

    def test_read_gmt_cleans_gseapy_parse(self, tmp_path, monkeypatch):
        from gene_sets import gmt

        parsed = {'SET_A': ['TP53', ' CDK2', '', 'TP53'], 'EMPTY': [], '': []}
        monkeypatch.setattr(gmt.gp, 'read_gmt', lambda path: parsed)

        assert read_gmt(str(tmp_path / "any.gmt")) == {'SET_A': ['TP53', 'CDK2']}

    def test_read_gmt_dir_unions_terms(self, tmp_path):
        write_gmt(tmp_path / "GMT" / "a.gmt", ["SET_A\tna\tTP53", "SET_B\tna\tTNF"])
        write_gmt(tmp_path / "GMT" / "b.gmt", ["SET_A\tna\tCDK2\tTP53"])
        (tmp_path / "GMT" / "notes.txt").write_text("ignored")

        gene_sets = read_gmt_dir(str(tmp_path / "GMT"))

        assert gene_sets == {'SET_A': ['TP53', 'CDK2'], 'SET_B': ['TNF']}

    def test_missing_dir(self, tmp_path):
        assert read_gmt_dir(str(tmp_path / "absent")) == {}


class TestGeneSetCollection:
    """Test the collection container."""

    def test_dict_round_trip(self):
        collection = GeneSetCollection('KEGG', {'hsa04010': ['1017']}, {'hsa04010': 'MAPK'})
        restored = GeneSetCollection.from_dict(json.loads(json.dumps(collection.to_dict())))

        assert restored == collection
        assert restored.describe('hsa04010') == 'MAPK'
        assert restored.describe('other') == 'other'

    def test_split_go_term(self):
        assert split_go_term('apoptotic process (GO:0006915)') == ('GO:0006915', 'apoptotic process')
        assert split_go_term('no id here') == ('no id here', 'no id here')


class TestGeneSetProvider:
    """Test family loading and caching."""

    def test_unknown_family(self):
        with pytest.raises(KeyError):
            GeneSetProvider(FakeMapper()).get('REACTOME')

    def test_kegg(self, fake_kegg):
        collection = GeneSetProvider(FakeMapper()).get('KEGG')

        assert collection.gene_sets == {'hsa04010': ['1017', '7157'], 'hsa04210': ['7157']}
        assert collection.describe('hsa04010') == 'MAPK signaling pathway'

    def test_built_once(self, fake_kegg):
        provider = GeneSetProvider(FakeMapper())

        first = provider.get('KEGG')
        second = provider.get('KEGG')

        assert first is second
        assert len(fake_kegg) == 2

    def test_json_cache(self, fake_kegg, tmp_path, monkeypatch):
        cache_dir = tmp_path / "gene_sets"
        original = GeneSetProvider(FakeMapper(), cache_dir=str(cache_dir)).get('KEGG')
        assert (cache_dir / "kegg_hsa.json").exists()

        def offline(url, timeout=None):
            raise AssertionError("network used despite cache")

        monkeypatch.setattr(provider_module.requests, 'get', offline)
        cached = GeneSetProvider(FakeMapper(), cache_dir=str(cache_dir)).get('KEGG')

        assert cached == original

    def test_cache_keyed_by_source_settings(self, tmp_path, monkeypatch):
        class FakeMsigdb:
            def get_gmt(self, category, dbver):
                return {
                    'h.all': {'HALLMARK_X': ['TP53']},
                    'c2.all': {'C2_Y': ['TNF']},
                }[category]

        monkeypatch.setattr(provider_module, 'Msigdb', FakeMsigdb)
        cache_dir = str(tmp_path / "gene_sets")

        hallmark = GeneSetProvider(FakeMapper(), msigdb_categories=['h.all'], cache_dir=cache_dir)
        curated = GeneSetProvider(FakeMapper(), msigdb_categories=['c2.all'], cache_dir=cache_dir)

        assert list(hallmark.get('MSIGDB').gene_sets) == ['HALLMARK_X']
        assert list(curated.get('MSIGDB').gene_sets) == ['C2_Y']
        assert hallmark.cache_key('MSIGDB') == 'msigdb_2023.2.Hs_h.all'

    def test_go_cache_key_includes_library_and_organism(self):
        mouse = GeneSetProvider(FakeMapper(), enrichr_organism='Mouse')
        human = GeneSetProvider(FakeMapper(), go_libraries={'GO_BP': 'GO_Biological_Process_2021'})

        assert mouse.cache_key('GO_BP') == 'go_bp_GO_Biological_Process_2023_Mouse'
        assert human.cache_key('GO_BP') == 'go_bp_GO_Biological_Process_2021_Human'

    def test_go_branch(self, monkeypatch):
        library = {
            'apoptotic process (GO:0006915)': ['TP53', 'TNF', 'UNKNOWN'],
            'orphan term (GO:0000001)': ['NOPE'],
        }
        requested = []

        def fake_get_library(name, organism):
            requested.append((name, organism))
            return library

        monkeypatch.setattr(provider_module.gp, 'get_library', fake_get_library)

        collection = GeneSetProvider(FakeMapper()).get('GO_BP')

        assert requested == [('GO_Biological_Process_2023', 'Human')]
        assert collection.name == 'GO_BP'
        assert collection.gene_sets == {'GO:0006915': ['7157', '7124']}
        assert collection.describe('GO:0006915') == 'apoptotic process'

    def test_msigdb(self, monkeypatch):
        class FakeMsigdb:
            def get_gmt(self, category, dbver):
                assert dbver == '2023.2.Hs'
                return {
                    'h.all': {'HALLMARK_TNFA_SIGNALING_VIA_NFKB': ['TNF', 'IL1A']},
                    'c2.all': {'BIOCARTA_P53_PATHWAY': ['TP53', 'CDK2']},
                }[category]

        monkeypatch.setattr(provider_module, 'Msigdb', FakeMsigdb)

        provider = GeneSetProvider(FakeMapper(), msigdb_categories=['h.all', 'c2.all'])
        collection = provider.get('MSIGDB')

        assert collection.gene_sets == {
            'HALLMARK_TNFA_SIGNALING_VIA_NFKB': ['7124', '3552'],
            'BIOCARTA_P53_PATHWAY': ['7157', '1017'],
        }

    def test_custom_sets(self, tmp_path):
        write_gmt(tmp_path / "GMT" / "custom.gmt", ["MY_SET\tna\tGAPDH\tTP53\tNOT_A_GENE"])

        collection = GeneSetProvider(FakeMapper(), gmt_dir=str(tmp_path / "GMT")).get('custom')

        assert collection.gene_sets == {'MY_SET': ['2597', '7157']}

    def test_custom_missing_dir_is_empty(self, tmp_path):
        collection = GeneSetProvider(FakeMapper(), gmt_dir=str(tmp_path / "absent")).get('custom')

        assert len(collection) == 0
        assert GeneSetProvider(FakeMapper()).get('custom').gene_sets == {}
