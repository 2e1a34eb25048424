from crono.cli import main

main()
