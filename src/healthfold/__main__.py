from healthfold.cli import main

main()
