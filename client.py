"""
Python client for the Parent Portal API.

PortalSession holds the bearer token and the cached profile of the signed-in
user. It can be persisted to a JSON file so a session survives restarts, and
it is cleared on logout or as soon as the API answers 401.

    session = PortalSession.load("~/.parent_portal.json")
    with PortalClient("http://localhost:8000/api", session) as portal:
        portal.login("parent@example.com", "password")
        for summary in portal.conversations():
            print(summary.name, summary.unread_count)
"""
import json
import os
from pathlib import Path
from typing import List, Optional

import httpx

from conversations import ConversationSummary, summarize_conversations, unread_for
from logging_config import get_logger, log_with_context

logger = get_logger("portal")


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code
        self.message = message


class PortalSession:
    def __init__(self, path: Optional[str] = None):
        self.path = Path(os.path.expanduser(path)) if path else None
        self.token: Optional[str] = None
        self.user: Optional[dict] = None

    @classmethod
    def load(cls, path: Optional[str] = None) -> "PortalSession":
        """Restore a session from `path`; a missing or unreadable file yields an empty session."""
        session = cls(path)
        if session.path is None or not session.path.exists():
            return session
        try:
            data = json.loads(session.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            data = None
        if not isinstance(data, dict):
            log_with_context(logger, "WARNING", "Discarding unreadable session file",
                             extra_data={"path": str(session.path)})
            session.clear()
            return session
        session.token = data.get("token")
        user = data.get("user")
        session.user = user if isinstance(user, dict) else None
        if not session.token:
            session.user = None
        return session

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def user_id(self) -> Optional[str]:
        return (self.user or {}).get("id")

    def start(self, token: str, user: dict) -> None:
        self.token = token
        self.user = user
        self._save()

    def clear(self) -> None:
        self.token = None
        self.user = None
        if self.path is not None and self.path.exists():
            self.path.unlink()

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"token": self.token, "user": self.user}), encoding="utf-8")


class PortalClient:
    def __init__(self, base_url: str, session: Optional[PortalSession] = None,
                 transport: Optional[httpx.BaseTransport] = None, timeout: float = 15.0):
        self.session = session or PortalSession()
        self._http = httpx.Client(base_url=base_url.rstrip("/"), transport=transport, timeout=timeout,
                                  headers={"Content-Type": "application/json"})

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs):
        headers = {}
        if self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"
        response = self._http.request(method, path, headers=headers, **kwargs)
        if response.is_success:
            return response.json()

        try:
            message = response.json().get("error") or response.reason_phrase
        except ValueError:
            message = response.reason_phrase
        if response.status_code == 401 and self.session.is_authenticated:
            log_with_context(logger, "INFO", "Session rejected by API, clearing",
                             extra_data={"path": path})
            self.session.clear()
        raise ApiError(response.status_code, message)

    def _items(self, method: str, path: str, **kwargs) -> list:
        return self._request(method, path, **kwargs)["items"]

    # ----------------------- Auth -----------------------

    def login(self, email: str, password: str) -> dict:
        data = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.session.start(data["token"], data["user"])
        return data["user"]

    def register(self, name: str, email: str, password: str, phone: str) -> dict:
        data = self._request("POST", "/auth/register",
                             json={"name": name, "email": email, "password": password, "phone": phone})
        self.session.start(data["token"], data["user"])
        return data["user"]

    def logout(self) -> None:
        self.session.clear()

    # ----------------------- Students -----------------------

    def students(self, class_name: str = None, section: str = None, parent_id: str = None) -> list:
        params = {k: v for k, v in (("class", class_name), ("section", section), ("parent_id", parent_id)) if v}
        return self._items("GET", "/students", params=params)

    def student(self, student_id: str) -> dict:
        return self._request("GET", f"/students/{student_id}")

    def add_student(self, name: str, roll_number: str, class_name: str, section: str, parent_id: str) -> dict:
        return self._request("POST", "/students", json={
            "name": name, "roll_number": roll_number, "class": class_name,
            "section": section, "parent_id": parent_id,
        })

    def update_attendance(self, student_id: str, present: int, absent: int) -> dict:
        return self._request("PUT", f"/students/{student_id}/attendance",
                             json={"present": present, "absent": absent})

    # ----------------------- Homework -----------------------

    def homework(self, class_name: str, section: str) -> list:
        return self._items("GET", "/homework", params={"class": class_name, "section": section})

    def add_homework(self, title: str, description: str, class_name: str, section: str,
                     subject: str, due_date: str, attachment_url: str = None) -> dict:
        return self._request("POST", "/homework", json={
            "title": title, "description": description, "class": class_name, "section": section,
            "subject": subject, "due_date": due_date, "attachment_url": attachment_url,
        })

    # ----------------------- Messages -----------------------

    def messages(self) -> list:
        return self._items("GET", "/messages")

    def conversation(self, other_user_id: str) -> list:
        return self._items("GET", f"/messages/conversation/{other_user_id}")

    def open_conversation(self, other_user_id: str) -> list:
        """Fetch the thread with `other_user_id` and mark what was sent to us as read."""
        messages = self.conversation(other_user_id)
        if self.session.user_id:
            for message in unread_for(messages, self.session.user_id):
                self.mark_read(message["id"])
                message["is_read"] = True
        return messages

    def conversations(self) -> List[ConversationSummary]:
        """Mailbox grouped per counterpart, most recent first."""
        if not self.session.user_id:
            return []
        return summarize_conversations(self.messages(), self.session.user_id)

    def send_message(self, receiver_id: str, content: str) -> dict:
        return self._request("POST", "/messages", json={"receiver_id": receiver_id, "content": content})

    def mark_read(self, message_id: str) -> dict:
        return self._request("PUT", f"/messages/{message_id}/read")

    # ----------------------- Users -----------------------

    def available_users(self) -> list:
        return self._items("GET", "/users/available")

    def user(self, user_id: str) -> dict:
        return self._request("GET", f"/users/{user_id}")

    def update_profile(self, **fields) -> dict:
        user = self._request("PUT", "/users/profile", json=fields)
        if self.session.is_authenticated:
            cached = dict(self.session.user or {})
            cached.update({k: user[k] for k in ("name", "email") if k in user})
            self.session.start(self.session.token, cached)
        return user

    def update_password(self, current_password: str, new_password: str) -> dict:
        return self._request("PUT", "/users/password", json={
            "current_password": current_password, "new_password": new_password,
        })
