from digit_network.cli import run

if __name__ == '__main__':
    run()
