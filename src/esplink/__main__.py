from esplink.cli.main import main

main()
