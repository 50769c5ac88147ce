from duo_relay.cli import serve

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    serve()
