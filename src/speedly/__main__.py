from speedly.cli import main

main()
