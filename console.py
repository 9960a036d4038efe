"""
IRONCHAT CONSOLE - Streaming chat from the terminal
====================================================

PURPOSE:
This is a command-line client for a running IronChat gateway. It sends each
question to POST /chat with the conversation so far and prints the answer as the
server-sent events arrive, the same way the mobile app renders it.

USAGE:
    IRONCHAT_TOKEN=<supabase access token> python console.py

    Make sure the server is running first: python run.py
    Without IRONCHAT_TOKEN the console asks for a token on start.

COMMANDS:
    /length concise|balanced|detailed - Change the response length preference
    /history - View the local conversation history
    /clear - Start a new conversation
    /quit or /exit - Exit the console
"""

import json
import os
from uuid import uuid4

import requests


# -----------------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------------
# Gateway base URL; change if your server runs on a different host or port.
BASE_URL = os.getenv("IRONCHAT_URL", "http://localhost:8000").rstrip("/")
RESPONSE_LENGTHS = ("concise", "balanced", "detailed")


# -----------------------------------------------------------------------------
# SSE AND ERROR HELPERS
# -----------------------------------------------------------------------------

def parse_frame(line):
    """
    Return the text delta carried by one SSE line, or None.

    The gateway sends `data: {"content": "..."}` followed by a blank line; blank
    lines, comments and anything that is not valid JSON yield None.
    """
    if not line or not line.startswith("data:"):
        return None
    try:
        payload = json.loads(line[5:].strip())
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("content"), str):
        return payload["content"]
    return None


def describe_error(status_code, body_text):
    """Turn a non-200 gateway response into a one-line message for the user."""
    try:
        err = json.loads(body_text)
    except ValueError:
        err = None
    if isinstance(err, dict) and isinstance(err.get("error"), str):
        message = err["error"]
        if err.get("code"):
            message += f" [{err['code']}]"
        if err.get("details"):
            message += f" ({err['details']})"
        return f"Error {status_code}: {message}"
    return f"Error {status_code}: {body_text}"


# -----------------------------------------------------------------------------
# CONSOLE SESSION
# -----------------------------------------------------------------------------

class ConsoleSession:
    def __init__(self, token, base_url=BASE_URL):
        self.token = token
        self.base_url = base_url
        self.history = []
        self.response_length = "balanced"
        self.conversation_id = str(uuid4())

    def clear(self):
        self.history = []
        self.conversation_id = str(uuid4())

    def build_body(self, question):
        return {
            "question": question,
            "conversationHistory": list(self.history),
            "preferences": {"responseLength": self.response_length},
            "conversationId": self.conversation_id,
        }

    def ask(self, question, on_delta):
        """
        Stream one answer. on_delta is called for every chunk of text; the full
        answer is returned and both turns are added to the history. Returns None
        (history unchanged) when the gateway refused the request.
        """
        response = requests.post(
            f"{self.base_url}/chat",
            json=self.build_body(question),
            headers={"Authorization": f"Bearer {self.token}"},
            stream=True,
            timeout=(10, 120),
        )
        with response:
            if response.status_code != 200:
                on_delta(describe_error(response.status_code, response.text))
                return None
            parts = []
            for line in response.iter_lines(decode_unicode=True):
                delta = parse_frame(line)
                if delta:
                    parts.append(delta)
                    on_delta(delta)
        answer = "".join(parts)
        self.history.append({"role": "user", "content": question})
        self.history.append({"role": "assistant", "content": answer})
        return answer


# -----------------------------------------------------------------------------
# MAIN LOOP
# -----------------------------------------------------------------------------

def main():
    print("\n" + "=" * 60)
    print("IronChat Console")
    print("=" * 60)
    print("Commands: /length <concise|balanced|detailed>, /history, /clear, /quit\n")

    token = os.getenv("IRONCHAT_TOKEN", "").strip()
    if not token:
        try:
            token = input("Access token: ").strip()
        except (KeyboardInterrupt, EOFError):
            return
    session = ConsoleSession(token)

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break
        if not user_input:
            continue

        if user_input in ("/quit", "/exit"):
            print("Goodbye!")
            break
        if user_input == "/clear":
            session.clear()
            print("Conversation cleared.")
            continue
        if user_input == "/history":
            for i, msg in enumerate(session.history, 1):
                role = "You" if msg["role"] == "user" else "Assistant"
                print(f"{i}. {role}: {msg['content']}")
            continue
        if user_input.startswith("/length"):
            choice = user_input[len("/length"):].strip()
            if choice in RESPONSE_LENGTHS:
                session.response_length = choice
                print(f"Response length: {choice}")
            else:
                print(f"Choose one of: {', '.join(RESPONSE_LENGTHS)}")
            continue
        if user_input.startswith("/"):
            print(f"Unknown command: {user_input}")
            continue

        print("Assistant: ", end="", flush=True)
        try:
            session.ask(user_input, lambda text: print(text, end="", flush=True))
        except requests.exceptions.ConnectionError:
            print("Cannot connect to the gateway. Start it with: python run.py", end="")
        except requests.exceptions.Timeout:
            print("Request timed out.", end="")
        print()


if __name__ == "__main__":
    main()
