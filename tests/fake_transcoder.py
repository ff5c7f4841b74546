"""
Stand-in for ffmpeg used by the test suite.

The source URL (last argument) picks the behaviour:
    fake://stream/<tag>     write a line every 20ms until interrupted
    fake://finite/<n>       write n lines, then exit 0
    fake://fail             complain on stderr, exit 3
    fake://stubborn/<tag>   like stream, but ignore SIGINT
"""
import signal
import sys
import time


def main(source_url):
    if source_url.startswith('fake://fail'):
        sys.stderr.write('fake-transcoder: connection refused\n')
        sys.stderr.flush()
        return 3
    if source_url.startswith('fake://stubborn'):
        signal.signal(signal.SIGINT, signal.SIG_IGN)

    limit = None
    if source_url.startswith('fake://finite/'):
        limit = int(source_url.rsplit('/', 1)[1])

    out = sys.stdout.buffer
    tag = source_url.encode()
    count = 0
    try:
        while limit is None or count < limit:
            out.write(b'%s:%d\n' % (tag, count))
            out.flush()
            count += 1
            time.sleep(0.02)
    except (KeyboardInterrupt, BrokenPipeError):
        pass
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[-1]))
