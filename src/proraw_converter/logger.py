"""
统一的日志处理模块
提供一致的日志接口，支持多种输出方式（控制台、队列、回调函数）
以及转换器内部使用的只追加调试记录 (TraceLog)
"""
from typing import Optional, Any, List


class Logger:
    """统一的日志处理器"""

    def __init__(self, log_target: Optional[Any] = None, file_id: Optional[str] = None, debug: bool = False):
        """
        初始化日志处理器

        Args:
            log_target: 日志输出目标，可以是：
                       - None: 使用 print
                       - Queue 对象: 使用 queue.put()
                       - Callable: 直接调用该函数
            file_id: 文件标识符，用于多文件处理时区分日志来源
            debug: 是否输出 DEBUG 级别日志
        """
        self.log_target = log_target
        self.file_id = file_id
        self.debug_enabled = debug

    def log(self, message: str, level: str = "INFO"):
        """
        发送日志消息

        Args:
            message: 日志消息内容
            level: 日志级别 (DEBUG, INFO, ERROR, SUCCESS, WARNING)
        """
        if level == "DEBUG" and not self.debug_enabled:
            return

        formatted_msg = self._format_message(message)

        if self.log_target is None:
            print(formatted_msg)
        elif hasattr(self.log_target, 'put'):
            # 队列模式（多进程）
            self.log_target.put({
                'id': self.file_id,
                'msg': message,
                'level': level
            })
        elif callable(self.log_target):
            # 函数模式（CLI）
            self.log_target(formatted_msg)
        else:
            print(formatted_msg)

    def _format_message(self, message: str) -> str:
        """格式化消息，添加文件 ID 前缀"""
        if self.file_id:
            return f"[{self.file_id}] {message}"
        return message

    def debug(self, message: str):
        """调试级别日志，仅在 debug=True 时输出"""
        self.log(message, "DEBUG")

    def info(self, message: str):
        """信息级别日志"""
        self.log(message, "INFO")

    def error(self, message: str):
        """错误级别日志"""
        self.log(message, "ERROR")

    def success(self, message: str):
        """成功级别日志"""
        self.log(message, "SUCCESS")

    def warning(self, message: str):
        """警告级别日志"""
        self.log(message, "WARNING")


class TraceLog:
    """
    只追加的调试记录

    RawConverter 在 debug 模式下把中间数值 (阈值、桶索引、alpha/beta)
    写到这里，而不是写进返回值。调用方可以随时读取或取出 (drain)。
    """

    def __init__(self):
        self._lines: List[str] = []

    def write(self, line: str):
        self._lines.append(line)

    def record(self, name: str, value):
        """记录一条命名数值"""
        if isinstance(value, float):
            value = f"{value:.6f}"
        self._lines.append(f"{name}: {value}")

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def text(self) -> str:
        return "\n".join(self._lines)

    def drain(self) -> List[str]:
        """返回全部记录并清空"""
        lines, self._lines = self._lines, []
        return lines

    def __len__(self):
        return len(self._lines)


def create_logger(log_target: Optional[Any] = None, file_id: Optional[str] = None, debug: bool = False) -> Logger:
    """
    工厂函数：创建日志处理器实例

    Args:
        log_target: 日志输出目标
        file_id: 文件标识符
        debug: 是否输出 DEBUG 级别日志

    Returns:
        Logger 实例
    """
    return Logger(log_target, file_id, debug)
