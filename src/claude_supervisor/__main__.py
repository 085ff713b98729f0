from claude_supervisor.cli.main import main

if __name__ == "__main__":
    main()
