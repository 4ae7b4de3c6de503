from verity.cli import main

main()
