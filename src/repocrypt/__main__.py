from repocrypt.main import main

main()
