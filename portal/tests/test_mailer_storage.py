import io
import smtplib

from werkzeug.datastructures import FileStorage

from portal.common import config
from portal.common.mailer import send_email
from portal.common.storage import save_photo


def _configure_smtp(mocker):
    mocker.patch.object(config, "SMTP_HOST", "smtp.example.org")
    mocker.patch.object(config, "EMAIL_FROM", "noreply@example.org")
    mocker.patch.object(config, "SMTP_USER", "mailer")
    mocker.patch.object(config, "SMTP_PASSWORD", "pw")
    mocker.patch.object(config, "SMTP_USE_TLS", True)


def test_send_email_skipped_when_not_configured(mocker):
    mocker.patch.object(config, "SMTP_HOST", None)
    smtp = mocker.patch("portal.common.mailer.smtplib.SMTP")
    assert send_email("a@example.org", "Hi", "Body") is False
    smtp.assert_not_called()


def test_send_email_without_recipient(mocker):
    _configure_smtp(mocker)
    assert send_email("", "Hi", "Body") is False


def test_send_email_delivers(mocker):
    _configure_smtp(mocker)
    smtp_cls = mocker.patch("portal.common.mailer.smtplib.SMTP")
    smtp = smtp_cls.return_value.__enter__.return_value

    assert send_email("a@example.org", "Receipt", "Thanks", html="<p>Thanks</p>") is True

    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("mailer", "pw")
    message = smtp.send_message.call_args[0][0]
    assert message["To"] == "a@example.org"
    assert message["Subject"] == "Receipt"


def test_send_email_failure_is_swallowed(mocker):
    _configure_smtp(mocker)
    smtp_cls = mocker.patch("portal.common.mailer.smtplib.SMTP")
    smtp_cls.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPException("rejected")

    assert send_email("a@example.org", "Receipt", "Thanks") is False


def _upload(name):
    return FileStorage(stream=io.BytesIO(b"fake image"), filename=name)


def test_save_photo_disabled_without_folder(mocker):
    mocker.patch.object(config, "UPLOAD_FOLDER", None)
    assert save_photo(_upload("me.png")) is None


def test_save_photo_none():
    assert save_photo(None) is None


def test_save_photo_rejects_non_images(mocker, tmp_path):
    mocker.patch.object(config, "UPLOAD_FOLDER", str(tmp_path))
    assert save_photo(_upload("script.sh")) is None


def test_save_photo_writes_file(mocker, tmp_path):
    mocker.patch.object(config, "UPLOAD_FOLDER", str(tmp_path))
    mocker.patch.object(config, "PHOTO_URL_PREFIX", "/uploads")

    url = save_photo(_upload("My Photo.PNG"))

    assert url.startswith("/uploads/")
    assert url.endswith("_My_Photo.PNG")
    stored = list(tmp_path.iterdir())
    assert len(stored) == 1
    assert stored[0].read_bytes() == b"fake image"


def test_save_photo_write_failure_degrades(mocker, tmp_path):
    mocker.patch.object(config, "UPLOAD_FOLDER", str(tmp_path))
    mocker.patch.object(FileStorage, "save", side_effect=OSError("disk full"))
    assert save_photo(_upload("me.png")) is None
