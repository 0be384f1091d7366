import sys

import misc
import config as Cfg
import envelope
import router
import engine as Eng
import instancedata
import termination

import sslog
log = sslog.logger(__name__)


def init(argv=None, environ=None):
    """ Build the configuration and the replacement engine. Exit the process on failure.
    """
    try:
        conf = Cfg.build(Cfg.collect_inputs(argv, environ), environ=environ)
    except (Cfg.ConfigError, instancedata.InstanceDataError) as e:
        log.error("Fatal initialization error: %s" % e)
        sys.exit(1)
    try:
        engine = Eng.load_engine(conf.replacement_engine)
    except (ImportError, AttributeError, ValueError) as e:
        log.error("Fatal initialization error: can not load replacement engine '%s' : %s" % (conf.replacement_engine, e))
        sys.exit(1)
    return conf, engine


def run(conf, engine):
    log.info("Starting spotswap agent, build %s" % Cfg.version())
    log.info("Parsed configuration: %s" % conf.describe())
    engine.run(conf)
    log.info("Execution completed, nothing left to do")


def perform(action, conf, engine, termination_factory=termination.SpotTermination):
    if isinstance(action, router.InvokeTermination):
        termination_factory(action.region).execute_action(action.instance_id, action.notification_action)
    elif isinstance(action, router.InvokeScheduledRun):
        run(conf, engine)
    else:
        log.info("No action taken: %s" % action.reason)


def make_handler(conf, engine, termination_factory=termination.SpotTermination):
    """ Return the Lambda handler bound to 'conf' and 'engine'.

    The handler returns normally even when the event is dropped.
    """
    def handler(event, context):
        log.debug("Received event: %s" % misc.pprint(event))
        classified = envelope.classify(event)
        action     = router.route(classified, conf)
        perform(action, conf, engine, termination_factory=termination_factory)
    return handler


def main(argv=None):
    """ Direct mode: one unconditional scheduled run.
    """
    conf, engine = init(argv)
    run(conf, engine)
    return 0


# Mode is decided once, at process start
MODE = misc.invocation_mode()
if MODE == misc.TRIGGERED:
    # Lambda runtime arguments are not ours: configuration comes from the environment only
    lambda_handler = make_handler(*init([]))

if __name__ == '__main__':
    sys.exit(main())
