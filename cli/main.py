# main.py

import sys

from loguru import logger

from cli.cli_interface import CLIInterface
from cli.system_manager import SystemManager
from eventstore.config import DEFAULT_CONFIG_FILE, StoreConfig


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main(argv=None):
    """主函数，启动事件存储的交互式命令行。可选参数为 JSON 配置文件路径。"""
    argv = sys.argv[1:] if argv is None else argv
    config = StoreConfig.load(argv[0] if argv else DEFAULT_CONFIG_FILE)
    configure_logging(config.log_level)

    system_manager = None
    try:
        system_manager = SystemManager(config)
        cli = CLIInterface(system_manager=system_manager)
        if not sys.stdin.isatty():
            # 从文件重定向输入，逐行执行
            for line in sys.stdin:
                if not cli.process_input(line):
                    break
        else:
            cli.run()
    finally:
        # 确保系统在退出时能正确关闭
        if system_manager:
            system_manager.shutdown()


if __name__ == "__main__":
    main()
