class TodoError(Exception):
    """Base class for errors raised by the todo service."""


class TodoNotFoundError(TodoError):
    def __init__(self, todo_id: int):
        super().__init__(f"Todo {todo_id} not found")
        self.todo_id = todo_id


class CronNotConfiguredError(TodoError):
    """The maintenance secret is missing from the server configuration."""


class CronUnauthorizedError(TodoError):
    """The supplied maintenance secret is missing or wrong."""
