import os
import subprocess
import sys

from dotenv import load_dotenv

COMMANDS = {
    "serve": lambda args: ["uvicorn", "fidogate.main:app", *(args or ["--host", "0.0.0.0", "--port", "8000"])],
    "upgrade": lambda args: ["alembic", "upgrade", args[0] if args else "head"],
    "downgrade": lambda args: ["alembic", "downgrade", args[0] if args else "-1"],
    "test": lambda args: ["pytest", *args],
}


def main():
    """
    Development runner.
    Loads the .env file, then runs the server, migrations or the test suite.
    """
    project_root = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, project_root)

    load_dotenv()

    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        print("Usage: python run.py <command> [args...]")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)

    cmd = COMMANDS[sys.argv[1]](sys.argv[2:])
    print(f"Executing: {' '.join(cmd)}")
    subprocess.run(cmd, check=True, env={**os.environ}, cwd=project_root)


if __name__ == "__main__":
    main()
