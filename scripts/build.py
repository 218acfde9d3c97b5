import PyInstaller.__main__


def main() -> None:
    """Bundle the CLI into a single executable under dist/."""
    PyInstaller.__main__.run(
        [
            "--onefile",
            "exams_cli/main.py",
            "--name",
            "exams-cli",
            "--collect-submodules",
            "exams_cli",
        ]
    )


if __name__ == "__main__":
    main()
