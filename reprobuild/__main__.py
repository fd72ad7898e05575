from reprobuild.orchestrator.main import main


if __name__ == "__main__":
    main()
