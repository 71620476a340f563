class AgentError(Exception):
  pass


class ConnectivityError(AgentError):
  pass


class FetchError(AgentError):
  def __init__(self, message: str, status_code: int | None = None):
    super().__init__(message)
    self.status_code = status_code


class ValidationError(AgentError):
  pass


class ExecutionError(AgentError):
  def __init__(self, message: str, timed_out: bool = False):
    super().__init__(message)
    self.timed_out = timed_out


class ReportError(AgentError):
  def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
    super().__init__(message)
    self.status_code = status_code
    self.body = body
