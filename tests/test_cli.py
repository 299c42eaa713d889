from pbr_lut_gen.cli import main
from pbr_lut_gen.vmf_parser import VMFMap, classname

from conftest import light_entity, surface_entity, vmf_text


def write_map(tmp_path, template='pbr/base_metal'):
    path = tmp_path / 'testmap.vmf'
    path.write_text(vmf_text(entities=[
        light_entity((0, 0, 32), name='lamp'),
        surface_entity((-64, -64, 0), (64, 64, 4), template=template),
    ]))
    return path


def test_missing_input(tmp_path, capsys):
    assert main(['-i', str(tmp_path / 'nope.vmf')]) == 1
    assert 'ERROR: Input file not found' in capsys.readouterr().err


def test_draft_run(tmp_path, game_dir, capsys):
    vmf_path = write_map(tmp_path)
    assert main(['-i', str(vmf_path), '--game', str(game_dir), '--draft-run',
                 '--dump-data', '--dump-clusters']) == 0
    out = capsys.readouterr().out
    assert 'Found 1 PBR lights total' in out
    assert 'Generated 1 LUT clusters' in out
    assert "Surface 'surface_1' -> assigned 1 lights. (Rejected: 0)" in out
    assert 'Registry built. Tracked targets: 0' in out
    assert list(game_dir.iterdir()) == []
    assert not (tmp_path / 'testmap_pbr.vmf').exists()


def test_without_final_keeps_map(tmp_path, game_dir, capsys):
    vmf_path = write_map(tmp_path)
    assert main(['-i', str(vmf_path), '--game', str(game_dir)]) == 0
    assert (game_dir / 'scripts' / 'vscripts' / '_autogen_debug' / 'testmap_pbr.nut').exists()
    assert (game_dir / 'materials' / 'maps' / 'testmap' / 'surface_1_lut.vtf').exists()
    assert not (tmp_path / 'testmap_pbr.vmf').exists()
    assert 'WARNING' in capsys.readouterr().err


def test_final_writes_stripped_map(tmp_path, game_dir):
    vmf_path = write_map(tmp_path)
    assert main(['-i', str(vmf_path), '--game', str(game_dir), '--final']) == 0
    out_map = VMFMap.load(tmp_path / 'testmap_pbr.vmf')
    assert not any('func_ggx' in classname(e) for e in out_map.entities)
    assert any(classname(e) == 'func_illusionary' for e in out_map.entities)


def test_final_custom_output(tmp_path, game_dir):
    vmf_path = write_map(tmp_path)
    out = tmp_path / 'build' / 'compile.vmf'
    assert main(['-i', str(vmf_path), '--game', str(game_dir), '--final',
                 '--output-vmf', str(out)]) == 0
    assert out.exists()


def test_missing_template_exits_nonzero(tmp_path, game_dir, capsys):
    vmf_path = write_map(tmp_path, template=None)
    assert main(['-i', str(vmf_path), '--game', str(game_dir)]) == 1
    assert "ERROR: Missing 'template_material'" in capsys.readouterr().err
