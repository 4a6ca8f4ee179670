import logging

from testcall.backend import BackendClient
from testcall.config import ReceptionistConfig
from testcall.errors import BackendError, ReplyGenerationError
from testcall.prompts import get_system_prompt

logger = logging.getLogger(__name__)


class DialogueEngine:
    """Keeps the chat history for one call and asks the backend for replies.

    History mirrors the transcript: the greeting first, then caller and
    assistant messages in the order they were recorded. The system prompt is
    prepended on every request, never stored in the history.
    """

    def __init__(self, config: ReceptionistConfig, client: BackendClient):
        self.config = config
        self.system_prompt = get_system_prompt(config)
        self._client = client
        self.history: list[dict] = []

    def record_greeting(self, text: str) -> None:
        self.history.append({"role": "assistant", "content": text})

    def messages(self) -> list[dict]:
        return [{"role": "system", "content": self.system_prompt}, *self.history]

    async def next_reply(self, caller_text: str) -> str:
        """Append the caller's message, fetch the reply, and append it.

        On failure the caller's message is rolled back so history never holds
        an unanswered turn, and ``ReplyGenerationError`` is raised.
        """
        self.history.append({"role": "user", "content": caller_text})
        try:
            reply = await self._client.chat(self.messages())
        except BackendError as e:
            self.history.pop()
            raise ReplyGenerationError(str(e)) from e

        reply = (reply or "").strip()
        if not reply:
            self.history.pop()
            raise ReplyGenerationError("chat returned an empty reply")

        self.history.append({"role": "assistant", "content": reply})
        return reply
