"""
Tests for best-effort SMTP delivery and the email templates.
"""
from __future__ import annotations

import smtplib

from institute import mailer
from institute.config import settings


class FakeSMTP:
    sent: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host

    def starttls(self):
        pass

    def login(self, username, password):
        pass

    def sendmail(self, from_addr, to_addrs, msg):
        FakeSMTP.sent.append((from_addr, to_addrs, msg))

    def quit(self):
        pass


class BrokenSMTP(FakeSMTP):
    def sendmail(self, from_addr, to_addrs, msg):
        raise smtplib.SMTPServerDisconnected("gone")


def test_no_smtp_host_only_logs(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", "")
    assert mailer.send_mail("a@example.com", "Hi", "Body") is False


def test_reply_is_delivered(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(settings, "smtp_host", "smtp.test")
    monkeypatch.setattr(mailer.smtplib, "SMTP", FakeSMTP)

    assert mailer.send_contact_reply("rahul@example.com", "Rahul", "Classes start Monday.", "Batch query")
    from_addr, to_addrs, raw = FakeSMTP.sent[0]
    assert to_addrs == ["rahul@example.com"]
    assert "Classes start Monday." in raw


def test_smtp_failure_is_swallowed(monkeypatch):
    monkeypatch.setattr(settings, "smtp_host", "smtp.test")
    monkeypatch.setattr(mailer.smtplib, "SMTP", BrokenSMTP)
    assert mailer.send_welcome_email("new@example.com", "New", "student") is False
