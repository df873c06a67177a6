# -*- coding: utf-8 -*-
"""
CLI接口模块
封装命令行交互逻辑和用户界面
"""

from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cli.system_manager import SystemManager
from eventstore.engine.event import Event, EventPayload
from eventstore.engine.event_service import EventError
from eventstore.errors import StorageError

DEFAULT_IDENTITY = 'anonymous'

HELP_TEXT = """支持的命令：
  as <identity>                                   切换当前调用者身份
  whoami                                          显示当前调用者身份
  create <title>|<description>|<location>|<image_url>
  get <id>
  update <id> <title>|<description>|<location>|<image_url>
  attend <id>
  delete <id>
  help                                            显示帮助
  quit / exit / q                                 退出"""


class CLIInterface:
    """命令行接口类"""

    def __init__(self, system_manager: SystemManager, identity: str = DEFAULT_IDENTITY,
                 console: Optional[Console] = None):
        self.system_manager = system_manager
        self.identity = identity
        self.console = console or Console()

    def print_welcome(self):
        """打印欢迎信息"""
        self.console.print("[bold]欢迎使用 eventstore！[/bold]")
        self.console.print("输入 'quit' 退出，输入 'help' 查看帮助。")
        self.console.print("=" * 50)

    def print_help(self):
        self.console.print(HELP_TEXT, markup=False)

    def process_input(self, line: str) -> bool:
        """
        处理一行命令。
        :return: False 表示应当退出主循环
        """
        line = line.strip()
        if not line:
            return True
        command, _, rest = line.partition(' ')
        command = command.lower()
        rest = rest.strip()
        if command in ('quit', 'exit', 'q'):
            return False
        if command == 'help':
            self.print_help()
            return True
        try:
            self._dispatch(command, rest)
        except StorageError as e:
            logger.error(f"命令 {command} 因存储错误失败: {e}")
            self.console.print(f"[bold red]操作失败（不可恢复的存储错误）: {escape(str(e))}[/bold red]")
        except ValueError as e:
            self.console.print(f"[bold red]参数错误: {escape(str(e))}[/bold red]")
        return True

    def _dispatch(self, command: str, rest: str) -> None:
        service = self.system_manager.event_service
        if command == 'as':
            if not rest:
                raise ValueError("用法: as <identity>")
            self.identity = rest
            self.console.print(f"当前身份: [bold]{self.identity}[/bold]")
        elif command == 'whoami':
            self.console.print(self.identity)
        elif command == 'create':
            self._display_result(service.create_event(self.identity, self._parse_payload(rest)))
        elif command == 'get':
            self._display_result(service.get_event(self._parse_id(rest)))
        elif command == 'update':
            id_part, _, payload_part = rest.partition(' ')
            self._display_result(
                service.update_event(self.identity, self._parse_id(id_part), self._parse_payload(payload_part)))
        elif command == 'attend':
            self._display_result(service.attend_event(self.identity, self._parse_id(rest)))
        elif command == 'delete':
            self._display_result(service.delete_event(self.identity, self._parse_id(rest)))
        else:
            self.console.print(f"[bold yellow]未知命令: {escape(command)}，输入 'help' 查看帮助[/bold yellow]")

    @staticmethod
    def _parse_id(text: str) -> int:
        text = text.strip()
        if not text.isdigit():
            raise ValueError(f"事件ID必须是非负整数: {text!r}")
        return int(text)

    @staticmethod
    def _parse_payload(text: str) -> EventPayload:
        parts: List[str] = [p.strip() for p in text.split('|')]
        if len(parts) != 4:
            raise ValueError("载荷格式: <title>|<description>|<location>|<image_url>")
        title, description, location, image_url = parts
        return EventPayload(
            event_description=description,
            event_title=title,
            event_location=location,
            event_card_image_url=image_url,
        )

    def _display_result(self, result) -> None:
        if isinstance(result, EventError):
            self.console.print(f"[bold red]{result.kind.value}[/bold red]: {escape(result.msg)}", highlight=False)
            return
        self._display_event(result)

    def _display_event(self, event: Event) -> None:
        """以表格形式显示一条事件（使用Rich）"""
        table = Table(show_header=True, header_style="bold cyan", title=f"Event {event.id}")
        table.add_column("字段")
        table.add_column("值")
        for key, value in event.to_dict().items():
            if key in ('created_at', 'updated_at') and value is not None:
                value = f"{value} ({_format_ns(value)})"
            elif key == 'attendees':
                value = ', '.join(value) if value else '-'
            elif value is None:
                value = '-'
            table.add_row(key, escape(str(value)))
        self.console.print(table)

    def run(self):
        """运行CLI主循环"""
        self.print_welcome()
        while True:
            try:
                line = input(f"{self.identity}> ")
            except EOFError:
                break
            except KeyboardInterrupt:
                self.console.print("\n\nGoodbye!")
                break
            if not self.process_input(line):
                self.console.print("Goodbye!")
                break


def _format_ns(timestamp_ns: int) -> str:
    return datetime.fromtimestamp(timestamp_ns / 1e9, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
