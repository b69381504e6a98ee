# run_server.py
import os
import sys


def _prepare_workdir_for_pyinstaller():
    """
    Wenn als PyInstaller-EXE gestartet (onefile/onefolder), werden
    die Daten unter _MEIPASS entpackt. Wir wechseln dorthin,
    damit relative Pfade wie 'cashbox/config' weiterhin funktionieren.
    """
    base = getattr(sys, "_MEIPASS", None)
    if base and os.path.isdir(base):
        os.chdir(base)


def main():
    _prepare_workdir_for_pyinstaller()

    import uvicorn
    from cashbox.config import settings as app_settings

    host = os.environ.get("CASHBOX_HOST", "127.0.0.1")
    port = int(os.environ.get("CASHBOX_PORT", "8000"))

    uvicorn.run("main:app", host=host, port=port, reload=False, log_level=app_settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
