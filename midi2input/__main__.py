from midi2input.gui import main

main()
