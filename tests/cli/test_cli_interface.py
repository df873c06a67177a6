import io
import json
import os
import sys
import tempfile
import pytest
from rich.console import Console
from cli.cli_interface import CLIInterface, DEFAULT_IDENTITY
from cli.main import main
from cli.system_manager import SystemManager
from eventstore.config import StoreConfig

@pytest.fixture
def cli():
    with tempfile.TemporaryDirectory() as tmpdir:
        system_manager = SystemManager(StoreConfig(data_dir=tmpdir), clock=lambda: 1_700_000_000_000_000_000)
        console = Console(record=True, width=120, file=io.StringIO())
        yield CLIInterface(system_manager=system_manager, console=console)
        system_manager.shutdown()

def output(cli):
    return cli.console.export_text()

def test_identity_commands(cli):
    assert cli.identity == DEFAULT_IDENTITY
    assert cli.process_input('as alice')
    assert cli.identity == 'alice'
    cli.process_input('whoami')
    assert 'alice' in output(cli)

def test_create_and_get(cli):
    cli.process_input('as alice')
    cli.process_input('create Launch|D|HQ|u')
    text = output(cli)
    assert 'Event 1' in text
    assert 'Launch' in text
    cli.process_input('get 1')
    text = output(cli)
    assert 'HQ' in text
    assert 'alice' in text

def test_domain_errors_are_printed(cli):
    cli.process_input('as alice')
    cli.process_input('create Launch|D|HQ|u')
    cli.process_input('as bob')
    cli.process_input('update 1 X|Y|Z|W')
    assert 'NotAuthorized' in output(cli)
    cli.process_input('attend 1')
    cli.process_input('attend 1')
    assert 'AlreadyAttending' in output(cli)
    cli.process_input('delete 7')
    assert 'NotFound' in output(cli)

def test_update_attend_delete(cli):
    cli.process_input('as alice')
    cli.process_input('create Launch|D|HQ|u')
    cli.process_input('update 1 Party|Fun|Roof|img')
    cli.process_input('attend 1')
    cli.process_input('delete 1')
    output(cli)
    cli.process_input('get 1')
    assert 'NotFound' in output(cli)
    # 已删除的ID不会被复用
    cli.process_input('create Next|D|HQ|u')
    assert 'Event 2' in output(cli)

def test_bad_arguments(cli):
    cli.process_input('get abc')
    assert '参数错误' in output(cli)
    cli.process_input('create only|three|parts')
    assert '参数错误' in output(cli)
    cli.process_input('as')
    assert '参数错误' in output(cli)
    cli.process_input('frobnicate')
    assert '未知命令' in output(cli)

def test_quit_and_blank_lines(cli):
    assert cli.process_input('')
    assert cli.process_input('help')
    assert not cli.process_input('quit')
    assert not cli.process_input('EXIT')

def test_main_reads_commands_from_stdin(monkeypatch, capsys):
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = os.path.join(tmpdir, 'eventstore.json')
        StoreConfig(data_dir=os.path.join(tmpdir, 'data')).save(config_path)
        monkeypatch.setattr(sys, 'stdin', io.StringIO('as alice\ncreate Launch|D|HQ|u\nquit\nget 1\n'))
        main([config_path])
        out = capsys.readouterr().out
        assert 'Event 1' in out
        assert 'Launch' in out

        # 第二次运行读取同一个文件
        monkeypatch.setattr(sys, 'stdin', io.StringIO('get 1\n'))
        main([config_path])
        assert 'Launch' in capsys.readouterr().out
        with open(config_path, encoding='utf-8') as f:
            assert json.load(f)['page_size'] == 4096

def test_storage_error_is_reported(cli):
    cli.process_input('as alice')
    cli.process_input('create Launch|D|HQ|u')
    output(cli)
    cli.process_input('create ' + 'x' * 2000 + '|D|HQ|u')
    text = output(cli)
    assert '不可恢复的存储错误' in text
    # 进程继续，计数器未推进
    cli.process_input('create Next|D|HQ|u')
    assert 'Event 2' in output(cli)
